# tests/test_embedding_sweep_worker.py
# Tests for the Qt sweep worker

import pytest

pytest.importorskip("PySide6")

from PySide6.QtCore import QCoreApplication

from services.photo_embedding_service import MaintenanceBusyError
from workers.embedding_sweep_worker import EmbeddingSweepWorker


@pytest.fixture(scope="session")
def qapp():
    """
    Single QCoreApplication for the test session.

    Yields:
        QCoreApplication: The application instance
    """
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


class TestEmbeddingSweepWorker:
    """Test suite for EmbeddingSweepWorker (run() called synchronously)."""

    def test_emits_progress_and_finished(self, qapp, service, photo_source):
        """Progress per photo, then a finished summary."""
        for i in range(3):
            photo_source.add(f"p{i}", (i * 40 + 10, 20, 20))

        worker = EmbeddingSweepWorker(service)
        progress, finished, errors = [], [], []
        worker.signals.progress.connect(lambda p, t: progress.append((p, t)))
        worker.signals.finished.connect(finished.append)
        worker.signals.error.connect(errors.append)

        worker.run()

        assert progress == [(1, 3), (2, 3), (3, 3)]
        assert len(finished) == 1
        assert finished[0]["computed"] == 3
        assert errors == []

    def test_cancel_before_run(self, qapp, service, photo_source):
        """A cancelled worker stops before the first photo."""
        photo_source.add("p0", (10, 20, 30))

        worker = EmbeddingSweepWorker(service)
        finished = []
        worker.signals.finished.connect(finished.append)
        worker.cancel()
        worker.run()

        assert worker.is_cancelled()
        assert finished[0]["cancelled"] is True
        assert finished[0]["processed"] == 0

    def test_error_signal(self, qapp, service, photo_source):
        """Sweep errors arrive on the error signal."""
        photo_source.add("p0", (10, 20, 30))
        worker = EmbeddingSweepWorker(service)
        errors = []
        worker.signals.error.connect(errors.append)

        with service._maintenance("test"):
            worker.run()

        assert len(errors) == 1
        assert "maintenance" in errors[0]


def test_busy_error_type(service):
    """The worker relies on the service raising MaintenanceBusyError."""
    with service._maintenance("test"):
        with pytest.raises(MaintenanceBusyError):
            service.cleanup_orphaned()
