"""Tests for the Dedup Ledger (hippo.ledger)."""

import tempfile
import threading
from pathlib import Path

import pytest

from hippo.ledger import DedupLedger, normalize_path


@pytest.fixture
def ledger_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestLoad:
    """Replaying the log into memory."""

    def test_missing_log_is_cold_start(self, ledger_dir):
        """A missing log loads as empty."""
        ledger = DedupLedger(ledger_dir / ".processed_files")
        assert ledger.load() == 0
        assert len(ledger) == 0

    def test_entries_survive_restart(self, ledger_dir):
        """Marked paths are present after reopening the log."""
        log = ledger_dir / ".processed_files"
        first = DedupLedger.open(log)
        first.mark_processed(ledger_dir / "a.mp3")
        first.mark_processed(ledger_dir / "b.wav")

        second = DedupLedger.open(log)
        assert len(second) == 2
        assert second.is_processed(ledger_dir / "a.mp3")
        assert second.is_processed(ledger_dir / "b.wav")

    def test_torn_tail_is_ignored(self, ledger_dir):
        """A final line without newline (crash mid-append) is not trusted."""
        log = ledger_dir / ".processed_files"
        good = normalize_path(ledger_dir / "good.mp3")
        log.write_text(f"{good}\n{ledger_dir}/to", encoding="utf-8")

        ledger = DedupLedger.open(log)

        assert len(ledger) == 1
        assert ledger.is_processed(ledger_dir / "good.mp3")

    def test_append_after_torn_tail_starts_new_line(self, ledger_dir):
        """The next entry is not concatenated onto the torn fragment."""
        log = ledger_dir / ".processed_files"
        log.write_text(f"{ledger_dir}/to", encoding="utf-8")

        ledger = DedupLedger.open(log)
        ledger.mark_processed(ledger_dir / "next.mp3")

        reopened = DedupLedger.open(log)
        assert reopened.is_processed(ledger_dir / "next.mp3")
        assert len(reopened) == 2  # fragment line is now complete, plus the new entry


class TestMarkProcessed:
    """Recording uploads."""

    def test_paths_normalized(self, ledger_dir):
        """Relative and absolute spellings of one file are the same entry."""
        ledger = DedupLedger(ledger_dir / "log")
        target = ledger_dir / "sub" / ".." / "a.mp3"

        assert ledger.mark_processed(target) is True
        assert ledger.is_processed(ledger_dir / "a.mp3")
        assert (ledger_dir / "a.mp3") in ledger

    def test_duplicate_mark_returns_false(self, ledger_dir):
        """Marking twice writes one line."""
        log = ledger_dir / "log"
        ledger = DedupLedger(log)

        assert ledger.mark_processed(ledger_dir / "a.mp3") is True
        assert ledger.mark_processed(ledger_dir / "a.mp3") is False
        assert log.read_text(encoding="utf-8").count("\n") == 1

    def test_durable_before_return(self, ledger_dir):
        """The entry is on disk as soon as mark_processed returns."""
        log = ledger_dir / "log"
        DedupLedger(log).mark_processed(ledger_dir / "a.mp3")
        assert log.read_text(encoding="utf-8") == normalize_path(ledger_dir / "a.mp3") + "\n"

    def test_newline_in_path_rejected(self, ledger_dir):
        """A path containing a newline cannot be represented."""
        ledger = DedupLedger(ledger_dir / "log")
        with pytest.raises(ValueError):
            ledger.mark_processed(ledger_dir / "bad\nname.mp3")

    def test_concurrent_duplicates_write_one_entry(self, ledger_dir):
        """Many threads marking the same path produce exactly one line."""
        log = ledger_dir / "log"
        ledger = DedupLedger(log)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(ledger.mark_processed(ledger_dir / "same.mp3"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert log.read_text(encoding="utf-8").count("\n") == 1
