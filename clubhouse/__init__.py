"""Clubhouse: membership lifecycle and subscription reconciliation service."""
