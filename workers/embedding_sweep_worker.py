"""
EmbeddingSweepWorker - Background Library Embedding Sweep

Version: 1.0.0
Date: 2026-10-17

Qt QRunnable wrapper around PhotoEmbeddingService.compute_all_embeddings()
for GUI hosts. Progress and completion arrive as Qt signals, so slots run
on the receiver's thread.

Usage:
    from workers.embedding_sweep_worker import EmbeddingSweepWorker
    from PySide6.QtCore import QThreadPool

    worker = EmbeddingSweepWorker(service)
    worker.signals.progress.connect(on_progress)
    worker.signals.finished.connect(on_finished)
    worker.signals.error.connect(on_error)

    QThreadPool.globalInstance().start(worker)
    ...
    worker.cancel()
"""

import threading

from PySide6.QtCore import QRunnable, QObject, Signal, Slot

from logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingSweepSignals(QObject):
    """
    Signals for EmbeddingSweepWorker.

    Qt signals must be defined in a QObject, not QRunnable.
    """
    # Progress: (processed, total)
    progress = Signal(int, int)

    # Finished: BatchResult.to_dict()
    finished = Signal(dict)

    # Error: (error_message)
    error = Signal(str)


class EmbeddingSweepWorker(QRunnable):
    """QRunnable that runs one library-wide embedding sweep."""

    def __init__(self, service):
        super().__init__()
        self.service = service
        self.signals = EmbeddingSweepSignals()
        self._cancel_event = threading.Event()
        self.setAutoDelete(False)

    def cancel(self):
        """Stop after the photo currently being processed."""
        logger.info("[EmbeddingSweepWorker] Cancellation requested")
        self._cancel_event.set()

    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @Slot()
    def run(self):
        logger.info("[EmbeddingSweepWorker] Starting embedding sweep")
        try:
            result = self.service.compute_all_embeddings(
                progress_callback=self.signals.progress.emit,
                cancel_event=self._cancel_event,
            )
        except Exception as e:
            logger.error(f"[EmbeddingSweepWorker] Sweep failed: {e}", exc_info=True)
            self.signals.error.emit(str(e))
            return

        logger.info(
            f"[EmbeddingSweepWorker] Sweep done: {result.computed} computed, "
            f"{result.failed} failed, cancelled={result.cancelled}"
        )
        self.signals.finished.emit(result.to_dict())
