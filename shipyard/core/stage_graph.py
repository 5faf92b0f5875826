"""Stage dependency DAG with cascade blocking.

The graph enforces:
- No stage runs unless every stage it depends on has SUCCEEDED.
- When a stage fails, all transitive dependents become BLOCKED.
- Definitions are validated up front: unknown dependencies and cycles are
  configuration errors.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from shipyard.errors import ConfigurationError, CyclicDependencyError, UnknownDependencyError
from shipyard.models.stages import StageDefinition, StageStatus


class StageGraph:
    """Directed acyclic graph of stage dependencies."""

    def __init__(self, stage_definitions: Iterable[StageDefinition]) -> None:
        self._order: list[str] = []
        self._stages: dict[str, StageDefinition] = {}
        for sd in stage_definitions:
            if sd.stage_id in self._stages:
                raise ConfigurationError(f"Duplicate stage id: {sd.stage_id}")
            self._stages[sd.stage_id] = sd
            self._order.append(sd.stage_id)

        self._dependencies: dict[str, list[str]] = {
            sid: list(sd.depends_on) for sid, sd in self._stages.items()
        }
        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._stages}
        for sid, deps in self._dependencies.items():
            for dep in deps:
                if dep not in self._stages:
                    raise UnknownDependencyError(
                        f"Stage {sid} depends on unknown stage {dep}"
                    )
                self._dependents[dep].append(sid)

        self._topo = self._topological_order()

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm, stable on declaration order."""
        in_degree = {sid: len(deps) for sid, deps in self._dependencies.items()}
        queue = deque(sid for sid in self._order if in_degree[sid] == 0)
        result: list[str] = []
        while queue:
            node = queue.popleft()
            result.append(node)
            for dep in self._dependents[node]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        if len(result) != len(self._stages):
            cyclic = sorted(sid for sid, deg in in_degree.items() if deg > 0)
            raise CyclicDependencyError(
                f"Stage graph has a cycle through: {', '.join(cyclic)}"
            )
        return result

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    @property
    def stage_ids(self) -> list[str]:
        """All stage ids in topological order."""
        return list(self._topo)

    @property
    def definitions(self) -> list[StageDefinition]:
        return [self._stages[sid] for sid in self._topo]

    def get_definition(self, stage_id: str) -> StageDefinition:
        return self._stages[stage_id]

    def get_dependencies(self, stage_id: str) -> list[str]:
        return list(self._dependencies.get(stage_id, []))

    def get_dependents(self, stage_id: str) -> list[str]:
        """Return all transitive dependents (BFS)."""
        result: list[str] = []
        queue = deque(self._dependents.get(stage_id, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents.get(node, []))
        return result

    def are_dependencies_met(self, stage_id: str, states: dict[str, StageStatus]) -> bool:
        return all(
            states.get(dep) == StageStatus.SUCCEEDED
            for dep in self._dependencies.get(stage_id, [])
        )

    def get_blocking_reasons(self, stage_id: str, states: dict[str, StageStatus]) -> list[str]:
        reasons = []
        for dep in self._dependencies.get(stage_id, []):
            state = states.get(dep, StageStatus.PENDING)
            if state != StageStatus.SUCCEEDED:
                reasons.append(f"{self._stages[dep].display_name} ({dep}) is {state.value}")
        return reasons

    def ready_stages(self, states: dict[str, StageStatus]) -> list[str]:
        """PENDING stages whose dependencies have all SUCCEEDED, in topological order."""
        return [
            sid for sid in self._topo
            if states.get(sid, StageStatus.PENDING) == StageStatus.PENDING
            and self.are_dependencies_met(sid, states)
        ]

    # ------------------------------------------------------------------
    # Cascade blocking
    # ------------------------------------------------------------------

    def cascade_block(self, failed_stage_id: str, states: dict[str, StageStatus]) -> list[str]:
        """Block every PENDING transitive dependent of a failed stage.

        Returns the stage ids that were newly blocked.
        """
        blocked: list[str] = []
        for stage_id in self.get_dependents(failed_stage_id):
            if states.get(stage_id, StageStatus.PENDING) == StageStatus.PENDING:
                states[stage_id] = StageStatus.BLOCKED
                blocked.append(stage_id)
        return blocked
