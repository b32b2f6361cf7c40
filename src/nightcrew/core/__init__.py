"""Scheduling policy, ledger, and shared domain types."""
