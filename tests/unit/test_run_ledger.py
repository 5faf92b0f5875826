"""Tests for the RunLedger: append-only, hash-chained, tamper-evident."""

from __future__ import annotations

import sqlite3
import threading

import pytest

from shipyard.core.run_ledger import LedgerIntegrityError, RunLedger
from shipyard.errors import RunNumberInUseError
from shipyard.models.ledger import CANCEL_REQUESTED, RUN_SCOPE, LedgerEntry


class TestRunLedger:
    def test_append_sets_entry_hash(self, ledger: RunLedger):
        sealed = ledger.append(LedgerEntry(
            run_id="run-1", stage_id="build", state_transition="pending->running",
        ))
        assert sealed.entry_hash != ""
        assert sealed.previous_entry_hash == ""  # first entry

    def test_hash_chain_links(self, ledger: RunLedger):
        e1 = ledger.append(LedgerEntry(
            run_id="run-1", stage_id="build", state_transition="pending->running",
        ))
        e2 = ledger.append(LedgerEntry(
            run_id="run-1", stage_id="build", state_transition="running->succeeded",
        ))
        assert e2.previous_entry_hash == e1.entry_hash

    def test_chains_are_per_run(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="build", state_transition="a->b"))
        other = ledger.append(LedgerEntry(run_id="run-2", stage_id="build", state_transition="a->b"))
        assert other.previous_entry_hash == ""

    def test_detail_round_trips(self, ledger: RunLedger):
        ledger.append(LedgerEntry(
            run_id="run-1",
            stage_id="build",
            state_transition="running->succeeded",
            artifact_references=["sha256:abc"],
            detail={"attempts": 2, "outputs": {"imageTag": "42"}},
        ))
        [entry] = ledger.get_run_entries("run-1")
        assert entry.detail == {"attempts": 2, "outputs": {"imageTag": "42"}}
        assert entry.artifact_references == ["sha256:abc"]

    def test_verify_chain_valid(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="build", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="render", state_transition="a->b"))
        assert ledger.verify_chain("run-1") is True

    def test_verify_chain_empty(self, ledger: RunLedger):
        assert ledger.verify_chain("nonexistent") is True

    def test_tampering_detected(self, ledger: RunLedger):
        ledger.append(LedgerEntry(
            run_id="run-1", stage_id="build", state_transition="running->failed",
            detail={"error_kind": "PushFailed"},
        ))
        conn = sqlite3.connect(str(ledger.db_path))
        conn.execute(
            "UPDATE run_ledger SET detail_json = ? WHERE run_id = ?",
            ('{"error_kind": "None"}', "run-1"),
        )
        conn.commit()
        conn.close()

        with pytest.raises(LedgerIntegrityError):
            ledger.verify_chain("run-1")

    def test_get_latest(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="build", state_transition="a->b"))
        e2 = ledger.append(LedgerEntry(run_id="run-1", stage_id="render", state_transition="c->d"))
        latest = ledger.get_latest("run-1")
        assert latest is not None
        assert latest.entry_id == e2.entry_id

    def test_get_stage_history(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="build", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="render", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="build", state_transition="b->c"))
        assert len(ledger.get_stage_history("run-1", "build")) == 2

    def test_get_all_run_ids_newest_first(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="build", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-2", stage_id="build", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="render", state_transition="a->b"))
        assert ledger.get_all_run_ids() == ["run-2", "run-1"]

    def test_has_run_and_transition(self, ledger: RunLedger):
        assert ledger.has_run("run-1") is False
        ledger.append(LedgerEntry(
            run_id="run-1", stage_id=RUN_SCOPE, state_transition=CANCEL_REQUESTED,
        ))
        assert ledger.has_run("run-1") is True
        assert ledger.has_transition("run-1", RUN_SCOPE, CANCEL_REQUESTED) is True
        assert ledger.has_transition("run-1", "build", CANCEL_REQUESTED) is False

    def test_run_scope_entries(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id=RUN_SCOPE, state_transition="none->pending"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="build", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-2", stage_id=RUN_SCOPE, state_transition="none->pending"))
        assert [e.run_id for e in ledger.get_run_scope_entries()] == ["run-2", "run-1"]

    def test_target_state(self):
        assert LedgerEntry(run_id="r", stage_id="s", state_transition="pending->running").target_state == "running"
        assert LedgerEntry(run_id="r", stage_id="s", state_transition=CANCEL_REQUESTED).target_state is None


class TestConcurrentAppends:
    def test_chain_stays_linear(self, ledger: RunLedger):
        """Parallel writers to one run still produce a valid chain."""

        def writer(stage: str) -> None:
            for i in range(10):
                ledger.append(LedgerEntry(run_id="run-1", stage_id=stage, state_transition=f"{i}->{i + 1}"))

        threads = [threading.Thread(target=writer, args=(f"s{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger.get_run_entries("run-1")) == 40
        assert ledger.verify_chain("run-1") is True


def _created(run_id: str) -> LedgerEntry:
    return LedgerEntry(run_id=run_id, stage_id=RUN_SCOPE, state_transition="none->pending")


class TestRunNumberClaims:
    def test_first_number_is_one(self, ledger: RunLedger):
        sealed = ledger.append_run_created(_created("sy-1"), "myapp")
        assert sealed.detail["run_number"] == "1"
        assert sealed.detail["pipeline"] == "myapp"
        assert ledger.verify_chain("sy-1") is True

    def test_next_number_follows_highest_numeric(self, ledger: RunLedger):
        ledger.append_run_created(_created("sy-1"), "myapp", "9")
        ledger.append_run_created(_created("sy-2"), "myapp", "release-candidate")
        ledger.append_run_created(_created("sy-3"), "other", "40")

        assert ledger.append_run_created(_created("sy-4"), "myapp").detail["run_number"] == "10"
        assert ledger.append_run_created(_created("sy-5"), "other").detail["run_number"] == "41"

    def test_reused_number_rejected_and_nothing_written(self, ledger: RunLedger):
        ledger.append_run_created(_created("sy-1"), "myapp", "7")
        with pytest.raises(RunNumberInUseError):
            ledger.append_run_created(_created("sy-2"), "myapp", "7")
        assert ledger.has_run("sy-2") is False

    def test_same_number_in_another_pipeline(self, ledger: RunLedger):
        ledger.append_run_created(_created("sy-1"), "myapp", "7")
        assert ledger.append_run_created(_created("sy-2"), "other", "7").detail["run_number"] == "7"

    def test_concurrent_claims_are_unique(self, ledger: RunLedger):
        barrier = threading.Barrier(8)
        numbers: list[str] = []

        def claim(n: int) -> None:
            barrier.wait()
            numbers.append(ledger.append_run_created(_created(f"sy-{n}"), "myapp").detail["run_number"])

        threads = [threading.Thread(target=claim, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(numbers, key=int) == [str(n) for n in range(1, 9)]
