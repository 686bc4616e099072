# src/olink/store/__init__.py
"""
Device-local durable storage (SQLite).

TransactionStore is the single place that enforces flag monotonicity:
every write goes through the merge rule in olink.transfer.state_machine.
"""
