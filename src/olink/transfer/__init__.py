# src/olink/transfer/__init__.py
"""
Transfer records and everything that is a pure function of them.

No I/O lives in this package: signing, verification and state transitions are
synchronous computations over immutable TransferRecord values.
"""
