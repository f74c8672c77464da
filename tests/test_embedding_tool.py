# tests/test_embedding_tool.py
# Tests for the maintenance command-line tool

import logging
import threading
from pathlib import Path

import pytest
from PIL import Image

import embedding_tool
from services.photo_embedding_service import PhotoEmbeddingService
from tests.fakes import FakeEmbeddingComputer


@pytest.fixture
def photo_dir(temp_dir: Path) -> Path:
    photos = temp_dir / "photos"
    photos.mkdir()
    Image.new("RGB", (320, 240), color=(200, 20, 20)).save(photos / "one.png")
    Image.new("RGB", (320, 240), color=(200, 20, 20)).save(photos / "two.png")
    Image.new("RGB", (320, 240), color=(20, 20, 200)).save(photos / "three.png")
    return photos


@pytest.fixture(autouse=True)
def isolated_logging(temp_dir: Path, monkeypatch):
    """The tool reconfigures the root logger and writes its log into cwd."""
    monkeypatch.chdir(temp_dir)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def run(photo_dir: Path, temp_dir: Path, *command) -> int:
    return embedding_tool.main([
        "--photos", str(photo_dir),
        "--db", str(temp_dir / "tool.db"),
        "--config", str(temp_dir / "missing_config.json"),
        "--log-level", "WARNING",
        *command,
    ])


class TestEmbeddingTool:
    """Test suite for embedding_tool sub-commands."""

    def test_sweep_then_stats(self, photo_dir, temp_dir, capsys):
        """sweep embeds everything; stats reports full coverage."""
        assert run(photo_dir, temp_dir, "sweep") == 0
        assert "Computed:           3" in capsys.readouterr().out

        assert run(photo_dir, temp_dir, "stats") == 0
        assert "Coverage:              100%" in capsys.readouterr().out

    def test_duplicates_and_similar(self, photo_dir, temp_dir, capsys):
        """The two identical photos are reported together."""
        run(photo_dir, temp_dir, "sweep")
        capsys.readouterr()

        assert run(photo_dir, temp_dir, "duplicates") == 0
        out = capsys.readouterr().out
        assert "Group 1 (2 photos)" in out
        assert "three.png" not in out

        assert run(photo_dir, temp_dir, "similar", "one.png", "--threshold", "0.9") == 0
        out = capsys.readouterr().out
        assert "two.png" in out
        assert "three.png" not in out

    def test_cleanup(self, photo_dir, temp_dir, capsys):
        """Deleted photos lose their embeddings."""
        run(photo_dir, temp_dir, "sweep")
        (photo_dir / "three.png").unlink()
        capsys.readouterr()

        assert run(photo_dir, temp_dir, "cleanup") == 0
        assert "Removed 1 orphaned embeddings" in capsys.readouterr().out

    def test_missing_folder(self, temp_dir, capsys):
        """A missing photo folder exits with an error code."""
        assert run(temp_dir / "nope", temp_dir, "stats") == 1


class GatedComputer(FakeEmbeddingComputer):
    """Holds the second photo inside compute() until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def compute(self, pixels: bytes, size: int):
        if self.calls == 1:
            self.entered.set()
            self.release.wait(timeout=5)
        return super().compute(pixels, size)


class CtrlCJob:
    """Raises KeyboardInterrupt from the first wait, while a photo is in flight."""

    def __init__(self, job, computer: GatedComputer):
        self.job = job
        self.computer = computer
        self.events = []

    def result(self, timeout=None):
        if not self.events:
            self.events.append("interrupt")
            assert self.computer.entered.wait(timeout=5)
            raise KeyboardInterrupt
        self.events.append("wait")
        return self.job.result(timeout)

    def cancel(self):
        self.events.append("cancel")
        self.job.cancel()
        self.computer.release.set()


class TestSweepInterrupt:
    """Ctrl+C during sweep cancels between photos."""

    def test_in_flight_photo_completes(self, memory_store, photo_source, config, clock, capsys):
        """The interrupted photo is stored, later photos are not started."""
        for pid in ("p1", "p2", "p3", "p4"):
            photo_source.add(pid, (200, 30, 30))
        computer = GatedComputer()
        service = PhotoEmbeddingService(memory_store, photo_source, computer, config=config, clock=clock)

        jobs = []
        start_job = service.start_embedding_job

        def start_interruptible_job(progress_callback=None):
            job = CtrlCJob(start_job(progress_callback), computer)
            jobs.append(job)
            return job

        service.start_embedding_job = start_interruptible_job
        try:
            assert embedding_tool.cmd_sweep(service, None) == 130
        finally:
            service.shutdown()

        assert jobs[0].events == ["interrupt", "cancel", "wait"]
        assert computer.calls == 2
        assert memory_store.count() == 2
        out = capsys.readouterr().out
        assert "Processed:          2/4" in out
