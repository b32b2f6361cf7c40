"""SQLite persistence for tasks, executions, and the credit ledger."""
