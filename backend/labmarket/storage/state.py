"""Ledger state persistence with atomic writes to data/ledger.yaml."""

import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from labmarket.config import get_settings
from labmarket.ledger import Experiment, ExperimentStore, Position, RoleAssignment
from labmarket.services.assets import TokenState

logger = logging.getLogger(__name__)


# ============================================================================
# Pydantic Models
# ============================================================================


class LedgerState(BaseModel):
    """Complete ledger state - matches data/ledger.yaml schema."""

    last_updated: datetime | None = None
    roles: RoleAssignment
    experiments: list[Experiment] = Field(default_factory=list)
    positions: list[Position] = Field(default_factory=list)
    assets: TokenState | None = None

    def to_store(self) -> ExperimentStore:
        return ExperimentStore(
            roles=self.roles,
            experiments=self.experiments,
            positions=self.positions,
        )

    @classmethod
    def from_store(
        cls, store: ExperimentStore, assets: TokenState | None = None
    ) -> "LedgerState":
        # Empty rows carry no information.
        positions = [p for p in store.all_positions() if not p.is_empty]
        return cls(
            roles=store.roles,
            experiments=list(store),
            positions=sorted(positions, key=lambda p: (p.experiment_id, p.participant)),
            assets=assets,
        )


# ============================================================================
# Paths and defaults
# ============================================================================

STATE_FILENAME = "ledger.yaml"


def get_data_dir() -> Path:
    """Configured data directory. Raises if ``init`` has not created it."""
    data_dir = get_settings().data_dir
    if data_dir.is_dir():
        return data_dir
    raise FileNotFoundError(
        f"No data directory at {data_dir}. Run 'python -m labmarket init' first."
    )


def _get_state_path(data_dir: Path | None = None) -> Path:
    return (data_dir or get_data_dir()) / STATE_FILENAME


def create_default_state() -> LedgerState:
    """Empty ledger whose roles come from the ``ledger`` config section."""
    ledger_config = get_settings().ledger
    return LedgerState(
        roles=RoleAssignment(
            primary=ledger_config.primary_identity,
            secondary=ledger_config.secondary_identity,
        )
    )


# ============================================================================
# Load / save
# ============================================================================


def load_state(data_dir: Path | None = None) -> LedgerState:
    """Read data/ledger.yaml; a missing or empty file yields a fresh ledger."""
    state_path = _get_state_path(data_dir)

    if not state_path.exists():
        logger.info(f"No ledger at {state_path}; starting empty")
        return create_default_state()

    try:
        raw_data = yaml.safe_load(state_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.error(f"Ledger file {state_path} is not valid YAML: {e}")
        raise

    if not raw_data:
        logger.warning(f"Ledger file {state_path} is empty; starting empty")
        return create_default_state()

    state = LedgerState.model_validate(raw_data)
    logger.debug(
        f"Loaded {len(state.experiments)} experiments and "
        f"{len(state.positions)} positions from {state_path}"
    )
    return state


def save_state(state: LedgerState, data_dir: Path | None = None) -> Path:
    """Write data/ledger.yaml atomically and return its path.

    The YAML goes to a temporary file beside the target, which is then moved
    over it; readers see either the old file or the new one.
    """
    state_path = _get_state_path(data_dir)
    state.last_updated = datetime.now(timezone.utc)
    payload = state.model_dump(mode="json")

    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=state_path.parent,
            prefix=".ledger-",
            suffix=".yaml",
            delete=False,
            encoding="utf-8",
        ) as handle:
            temp_path = Path(handle.name)
            yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)

        shutil.move(str(temp_path), str(state_path))
    except Exception as e:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        logger.error(f"Could not save ledger to {state_path}: {e}")
        raise

    logger.debug(f"Saved ledger to {state_path}")
    return state_path
