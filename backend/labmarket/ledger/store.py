"""In-memory experiment store.

Experiments are an append-only list indexed by id. Positions live in one map
keyed by ``(experiment_id, participant)``.
"""

from __future__ import annotations

import logging
from typing import Iterator, NamedTuple

from .exceptions import ExperimentNotFoundError
from .models import Experiment, Position, RoleAssignment

logger = logging.getLogger(__name__)

PositionKey = tuple[int, str]


class StoreSnapshot(NamedTuple):
    experiments: list[Experiment]
    positions: dict[PositionKey, Position]
    roles: RoleAssignment


class ExperimentStore:
    def __init__(
        self,
        roles: RoleAssignment,
        experiments: list[Experiment] | None = None,
        positions: list[Position] | None = None,
    ):
        self._roles = roles
        self._experiments: list[Experiment] = []
        self._positions: dict[PositionKey, Position] = {}

        for index, experiment in enumerate(experiments or []):
            if experiment.id != index:
                raise ValueError(
                    f"Experiment ids must be sequential: expected {index}, got {experiment.id}"
                )
            self._experiments.append(experiment)

        for position in positions or []:
            self._positions[(position.experiment_id, position.participant)] = position

    # ------------------------------------------------------------------
    # Experiments
    # ------------------------------------------------------------------

    @property
    def next_id(self) -> int:
        return len(self._experiments)

    def append(self, experiment: Experiment) -> Experiment:
        if experiment.id != self.next_id:
            raise ValueError(
                f"Experiment id {experiment.id} does not match next id {self.next_id}"
            )
        self._experiments.append(experiment)
        return experiment

    def get(self, experiment_id: int) -> Experiment:
        """Return the live record; callers outside the ledger get copies."""
        if experiment_id < 0 or experiment_id >= self.next_id:
            raise ExperimentNotFoundError(
                f"Experiment {experiment_id} not found", experiment_id=experiment_id
            )
        return self._experiments[experiment_id]

    def __iter__(self) -> Iterator[Experiment]:
        return iter(self._experiments)

    def __len__(self) -> int:
        return len(self._experiments)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def position(self, experiment_id: int, participant: str) -> Position:
        """Return the live row, creating an empty one on first touch."""
        key = (experiment_id, participant)
        row = self._positions.get(key)
        if row is None:
            row = Position(experiment_id=experiment_id, participant=participant)
            self._positions[key] = row
        return row

    def peek_position(self, experiment_id: int, participant: str) -> Position | None:
        return self._positions.get((experiment_id, participant))

    def positions_for(self, experiment_id: int) -> list[Position]:
        return [p for (eid, _), p in self._positions.items() if eid == experiment_id]

    def positions_of(self, participant: str) -> list[Position]:
        rows = [p for (_, who), p in self._positions.items() if who == participant]
        return sorted(rows, key=lambda p: p.experiment_id)

    def all_positions(self) -> list[Position]:
        return list(self._positions.values())

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @property
    def roles(self) -> RoleAssignment:
        return self._roles

    @roles.setter
    def roles(self, value: RoleAssignment) -> None:
        self._roles = value

    # ------------------------------------------------------------------
    # Transaction support
    # ------------------------------------------------------------------

    def snapshot(self) -> StoreSnapshot:
        # Fields are immutable scalars, so shallow model copies are enough.
        return StoreSnapshot(
            experiments=[e.model_copy() for e in self._experiments],
            positions={k: p.model_copy() for k, p in self._positions.items()},
            roles=self._roles.model_copy(),
        )

    def restore(self, snapshot: StoreSnapshot) -> None:
        self._experiments = snapshot.experiments
        self._positions = snapshot.positions
        self._roles = snapshot.roles
        logger.debug(f"Restored store snapshot ({len(self._experiments)} experiments)")
