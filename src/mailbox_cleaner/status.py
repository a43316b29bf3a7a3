"""Progress tracking for long-running mailbox scans."""

import threading
from dataclasses import replace

from .models import ProcessingStatus

OPERATION_SEARCHING = "Searching emails"
OPERATION_PROCESSING = "Processing emails"
OPERATION_COMPLETED = "Completed"
OPERATION_ERROR = "Error occurred"
OPERATION_CANCELLED = "Cancelled"


class ProcessingTracker:
    """Mutable scan progress owned by a retrieval service.

    The scan loop writes through the methods below while pollers call
    snapshot() from other tasks or threads. Every access goes through one
    lock, so a snapshot is never a half-written record.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = ProcessingStatus()

    def snapshot(self) -> ProcessingStatus:
        with self._lock:
            return self._status

    def begin(self, operation: str = OPERATION_SEARCHING) -> None:
        """Reset to a clean in-progress state at the start of a scan."""
        with self._lock:
            self._status = ProcessingStatus(is_processing=True, current_operation=operation)

    def start(self, total_emails: int, total_batches: int) -> None:
        with self._lock:
            self._status = ProcessingStatus(
                is_processing=True,
                total_emails=total_emails,
                processed_emails=0,
                current_batch=0,
                total_batches=total_batches,
                current_operation=OPERATION_PROCESSING,
            )

    def record_processed(self, count: int = 1) -> None:
        with self._lock:
            self._status = replace(self._status, processed_emails=self._status.processed_emails + count)

    def complete_batch(self, batch_number: int) -> None:
        with self._lock:
            self._status = replace(self._status, current_batch=batch_number)

    def complete(self) -> None:
        self._finish(OPERATION_COMPLETED)

    def fail(self) -> None:
        self._finish(OPERATION_ERROR)

    def cancel(self) -> None:
        self._finish(OPERATION_CANCELLED)

    def _finish(self, operation: str) -> None:
        with self._lock:
            self._status = replace(self._status, is_processing=False, current_operation=operation)
