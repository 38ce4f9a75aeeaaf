"""Membership billing: trial policy, reconciliation, checkout and ledger."""
