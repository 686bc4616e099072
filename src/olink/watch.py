from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from olink.store.transfer_store import TransactionStore
from olink.transfer.record import TransferRecord, VerificationStatus


class RecordWatcher:
    """Observe one record's verification progress through store pushes.

    Display-side helper: sees every committed change for `record_id` and
    stops listening once the record is completed or close() is called.
    """

    def __init__(
        self,
        *,
        store: TransactionStore,
        record_id: str,
        on_change: Optional[Callable[[TransferRecord], None]] = None,
    ) -> None:
        self.record_id = str(record_id)
        self._on_change = on_change
        self._done = threading.Event()
        self._latest: Optional[TransferRecord] = None
        self._lock = threading.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = store.subscribe(self._observe)

        # Catch up with whatever was committed before we subscribed.
        current = store.get_by_id(self.record_id)
        if current is not None:
            self._observe(current)

    @property
    def latest(self) -> Optional[TransferRecord]:
        with self._lock:
            return self._latest

    @property
    def completed(self) -> bool:
        return self._done.is_set()

    def _observe(self, record: TransferRecord) -> None:
        if record.id != self.record_id or self._done.is_set():
            return
        with self._lock:
            prev = self._latest
            if prev is not None and prev.status is record.status:
                return
            self._latest = record
        if self._on_change is not None:
            self._on_change(record)
        if record.status is VerificationStatus.COMPLETED:
            self._done.set()
            self.close()

    def wait_until_completed(
        self,
        *,
        timeout_s: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[TransferRecord]:
        """Block until completed, timeout, or cancel; returns the completed record or None."""
        deadline = time.monotonic() + float(timeout_s) if timeout_s is not None else None
        while not self._done.is_set():
            if cancel is not None and cancel.is_set():
                self.close()
                return None
            slice_s = 0.1
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                slice_s = min(slice_s, remaining)
            self._done.wait(slice_s)
        return self.latest

    def close(self) -> None:
        unsub, self._unsubscribe = self._unsubscribe, None
        if unsub is not None:
            unsub()

    def __enter__(self) -> "RecordWatcher":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
