"""
Integration Tests: Storage

Ledger state survives a save/load cycle through data/ledger.yaml, and
committed notifications land in the daily JSONL log.
"""

import threading

import pytest
import yaml

from labmarket.clock import FrozenClock
from labmarket.config import Settings, get_settings
from labmarket.ledger import Outcome, RoleAssignment
from labmarket.runtime import build_runtime
from labmarket.services.notifications import Notification, NotificationKind
from labmarket.storage import (
    LedgerState,
    load_state,
    log_notification,
    read_notifications,
    save_state,
)

PRIMARY = "primary-admin"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, data_dir=tmp_path)


@pytest.fixture
def runtime(settings):
    state = LedgerState(roles=RoleAssignment(primary=PRIMARY, secondary="secondary-admin"))
    return build_runtime(state, settings=settings, clock=FrozenClock(), data_dir=settings.data_dir)


def test_load_missing_file_returns_empty_state(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("LABMARKET_DATA_DIR", str(tmp_path))
    get_settings.cache_clear()
    try:
        state = load_state(tmp_path)
    finally:
        get_settings.cache_clear()

    assert state.experiments == []
    assert state.roles.primary == PRIMARY


def test_round_trip_preserves_ledger_and_balances(runtime, settings) -> None:
    ledger = runtime.ledger
    runtime.fund("alice", 500)
    runtime.approve_pool("alice", 500)
    experiment_id = ledger.create_experiment(PRIMARY, 10, 100)
    ledger.deposit("alice", experiment_id, 40)
    ledger.bet("alice", experiment_id, 20, 5)
    ledger.admin_withdraw(PRIMARY, experiment_id)
    ledger.admin_set_result(PRIMARY, experiment_id, Outcome.SIDE0)

    path = runtime.save()
    assert path == settings.data_dir / "ledger.yaml"
    assert not list(settings.data_dir.glob(".ledger-*.yaml"))

    restored = build_runtime(load_state(settings.data_dir), settings=settings)

    experiment = restored.ledger.get_experiment(experiment_id)
    assert experiment.betting_outcome == Outcome.SIDE0
    assert experiment.settled_pool == 25
    assert experiment.open is False
    assert restored.ledger.get_position(experiment_id, "alice").deposit_amount == 40
    assert restored.token.balance_of("alice") == 435
    assert restored.token.balance_of(PRIMARY) == 40

    # The restored ledger keeps working against the restored balances.
    assert restored.ledger.claim_bet_profit("alice", experiment_id) == 25
    assert restored.token.balance_of("alice") == 460


def test_saved_file_is_plain_yaml(runtime, settings) -> None:
    runtime.ledger.create_experiment(PRIMARY, 10, 100)
    runtime.save()

    raw = yaml.safe_load((settings.data_dir / "ledger.yaml").read_text())

    assert raw["roles"]["primary"] == PRIMARY
    assert raw["experiments"][0]["betting_outcome"] == "unset"
    assert raw["last_updated"] is not None


def test_empty_rows_are_not_persisted(runtime, settings) -> None:
    ledger = runtime.ledger
    runtime.fund("alice", 10)
    runtime.approve_pool("alice", 10)
    experiment_id = ledger.create_experiment(PRIMARY, 1, 100)
    ledger.deposit("alice", experiment_id, 10)
    ledger.undeposit("alice", experiment_id)

    state = runtime.snapshot_state()

    assert state.positions == []


def test_notifications_are_logged_per_day(runtime, settings) -> None:
    experiment_id = runtime.ledger.create_experiment(PRIMARY, 10, 100)

    logged = [
        n
        for path in (settings.data_dir / "notifications").glob("*.jsonl")
        for n in read_notifications(path.stem, settings.data_dir)
    ]

    assert [n.kind for n in logged] == [NotificationKind.EXPERIMENT_CREATED]
    assert logged[0].experiment_id == experiment_id


def test_log_notification_appends_lines(tmp_path) -> None:
    notification = Notification(kind=NotificationKind.DEPOSITED, experiment_id=0, amount=3)

    path = log_notification(notification, tmp_path)
    log_notification(notification, tmp_path)

    assert path.parent == tmp_path / "notifications"
    lines = path.read_text().splitlines()
    assert len(lines) == 2
    assert read_notifications(path.stem, tmp_path)[0].amount == 3


def test_save_state_requires_existing_directory(tmp_path) -> None:
    state = LedgerState(roles=RoleAssignment(primary=PRIMARY))
    with pytest.raises(FileNotFoundError):
        save_state(state, tmp_path / "missing")


def test_save_waits_for_in_flight_operation(runtime, settings) -> None:
    ledger = runtime.ledger
    runtime.fund("alice", 100)
    runtime.approve_pool("alice", 100)
    experiment_id = ledger.create_experiment(PRIMARY, 10, 100)

    entered = threading.Event()
    release = threading.Event()
    errors: list[Exception] = []

    def stall_then_fail(sender: str, to: str, amount: int) -> None:
        entered.set()
        release.wait(timeout=5)
        raise RuntimeError("pool rejected the deposit")

    runtime.token.add_receive_hook(settings.ledger.pool_account, stall_then_fail)

    def deposit() -> None:
        try:
            ledger.deposit("alice", experiment_id, 50)
        except RuntimeError as e:
            errors.append(e)

    depositor = threading.Thread(target=deposit)
    depositor.start()
    assert entered.wait(timeout=5)

    # A save from another request must not see the half-applied deposit.
    saver = threading.Thread(target=runtime.save)
    saver.start()
    saver.join(timeout=0.2)
    assert saver.is_alive()

    release.set()
    depositor.join(timeout=5)
    saver.join(timeout=5)

    assert len(errors) == 1
    assert ledger.get_experiment(experiment_id).total_deposited == 0
    persisted = load_state(settings.data_dir)
    assert persisted.experiments[0].total_deposited == 0
    assert persisted.positions == []
    assert persisted.assets.balances["alice"] == 100
