"""Coordinator <-> study assignment maps."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Set

from services.workload_types import Assignment


@dataclass
class AssignmentMap:
    by_study: Dict[str, Set[str]] = field(default_factory=dict)
    by_coordinator: Dict[str, Set[str]] = field(default_factory=dict)

    def coordinators_for(self, study_id: str) -> Set[str]:
        return self.by_study.get(study_id, set())

    def studies_for(self, coordinator_id: str) -> Set[str]:
        return self.by_coordinator.get(coordinator_id, set())

    @property
    def coordinator_ids(self) -> Set[str]:
        return set(self.by_coordinator)


def resolve_assignments(assignments: Iterable[Assignment]) -> AssignmentMap:
    """Build both directions of the many-to-many relation. Pairs missing either id are ignored."""
    resolved = AssignmentMap()
    for assignment in assignments:
        if not assignment.study_id or not assignment.coordinator_id:
            continue
        resolved.by_study.setdefault(assignment.study_id, set()).add(assignment.coordinator_id)
        resolved.by_coordinator.setdefault(assignment.coordinator_id, set()).add(assignment.study_id)
    return resolved
