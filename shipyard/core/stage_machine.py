"""Deterministic stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Dependencies checked before RUNNING
- Cascade blocking on failure
- Every transition recorded in the Run Ledger
"""

from __future__ import annotations

from typing import Any

from shipyard.core.run_ledger import RunLedger
from shipyard.core.stage_graph import StageGraph
from shipyard.models.ledger import LedgerEntry
from shipyard.models.stages import VALID_TRANSITIONS, StageStatus


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class DependencyNotMetError(RuntimeError):
    """Raised when a stage is started before its dependencies succeeded."""


class StageMachine:
    """Enforces the stage state machine for the runs of one pipeline.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    graph:
        The stage dependency graph.
    """

    def __init__(self, ledger: RunLedger, graph: StageGraph) -> None:
        self._ledger = ledger
        self._graph = graph
        # run_id -> {stage_id -> StageStatus}
        self._states: dict[str, dict[str, StageStatus]] = {}

    @property
    def graph(self) -> StageGraph:
        return self._graph

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageStatus]:
        """Initialize all stages to PENDING for a new run."""
        states = {sid: StageStatus.PENDING for sid in self._graph.stage_ids}
        self._states[run_id] = states
        return dict(states)

    def get_current_state(self, run_id: str, stage_id: str) -> StageStatus:
        return self._run_states(run_id).get(stage_id, StageStatus.PENDING)

    def get_all_states(self, run_id: str) -> dict[str, StageStatus]:
        """Return a snapshot of all stage states for a run."""
        return dict(self._run_states(run_id))

    def _run_states(self, run_id: str) -> dict[str, StageStatus]:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id]

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the ledger."""
        states = {sid: StageStatus.PENDING for sid in self._graph.stage_ids}
        for entry in self._ledger.get_run_entries(run_id):
            if entry.stage_id not in states or entry.target_state is None:
                continue
            try:
                states[entry.stage_id] = StageStatus(entry.target_state)
            except ValueError:
                continue
        self._states[run_id] = states

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageStatus,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Transition a stage to a new state, recording it in the ledger.

        Validates that the transition is allowed and, for RUNNING, that
        dependencies have succeeded.  A transition to FAILED cascade-blocks
        dependents.  Returns the sealed LedgerEntry.
        """
        states = self._run_states(run_id)
        current = states.get(stage_id, StageStatus.PENDING)

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageStatus.RUNNING and not self._graph.are_dependencies_met(
            stage_id, states
        ):
            reasons = self._graph.get_blocking_reasons(stage_id, states)
            raise DependencyNotMetError(
                f"Cannot start {stage_id}: blocked by {'; '.join(reasons)}"
            )

        sealed = self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                stage_id=stage_id,
                state_transition=f"{current.value}->{target_state.value}",
                input_hash=input_hash,
                output_hash=output_hash,
                artifact_references=artifact_references or [],
                detail=detail or {},
            )
        )
        states[stage_id] = target_state

        if target_state == StageStatus.FAILED:
            for blocked_id in self._graph.cascade_block(stage_id, states):
                self._ledger.append(
                    LedgerEntry(
                        run_id=run_id,
                        stage_id=blocked_id,
                        state_transition=(
                            f"{StageStatus.PENDING.value}->{StageStatus.BLOCKED.value}"
                        ),
                        detail={"upstream": stage_id},
                    )
                )

        return sealed

    def can_start(self, run_id: str, stage_id: str) -> tuple[bool, list[str]]:
        """Check if a stage can transition to RUNNING.

        Returns (can_start, blocking_reasons).
        """
        states = self._run_states(run_id)
        current = states.get(stage_id, StageStatus.PENDING)
        if current != StageStatus.PENDING:
            return False, [f"Stage is currently {current.value}, not pending"]
        if not self._graph.are_dependencies_met(stage_id, states):
            return False, self._graph.get_blocking_reasons(stage_id, states)
        return True, []

    def ready_stages(self, run_id: str) -> list[str]:
        return self._graph.ready_stages(self._run_states(run_id))
