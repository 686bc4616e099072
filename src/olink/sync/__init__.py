# src/olink/sync/__init__.py
"""
Ledger synchronization.

Local confirmation never waits on the ledger: the agent pushes when the
probe says the ledger is reachable and otherwise queues a job that the
worker retries with capped exponential backoff.
"""
