"""
Worker threads for background operations.

This package contains QRunnable-based workers for time-consuming operations
that should not block the UI thread.
"""

from workers.embedding_sweep_worker import EmbeddingSweepWorker, EmbeddingSweepSignals

__all__ = ['EmbeddingSweepWorker', 'EmbeddingSweepSignals']
