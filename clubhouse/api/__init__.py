"""HTTP API for the membership service."""
