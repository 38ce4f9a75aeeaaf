"""Core modules shared across the Clubhouse backend."""
