"""Tests for role resolution and role administration."""

import pytest

from labmarket.ledger import (
    ADMIN_ROLES,
    PRIMARY_ONLY,
    InvalidIdentityError,
    Role,
    RoleAssignment,
    RoleMismatchError,
    require_role,
    resolve_role,
)
from labmarket.services.notifications import NotificationKind

PRIMARY = "primary-admin"
SECONDARY = "secondary-admin"


def test_resolve_role() -> None:
    roles = RoleAssignment(primary="p", secondary="s")
    assert resolve_role("p", roles) == Role.PRIMARY
    assert resolve_role("s", roles) == Role.SECONDARY
    assert resolve_role("x", roles) == Role.NONE


def test_unset_secondary_matches_nobody() -> None:
    roles = RoleAssignment(primary="p")
    assert resolve_role("", roles) == Role.NONE
    assert resolve_role("None", roles) == Role.NONE


def test_require_role_raises_with_stable_code() -> None:
    roles = RoleAssignment(primary="p", secondary="s")
    assert require_role("s", roles, ADMIN_ROLES, "admin_close") == Role.SECONDARY

    with pytest.raises(RoleMismatchError) as exc_info:
        require_role("s", roles, PRIMARY_ONLY, "admin_withdraw", experiment_id=3)

    assert exc_info.value.code == "ROLE_MISMATCH"
    assert exc_info.value.to_dict()["experiment_id"] == 3


def test_secondary_cannot_resolve_or_withdraw(ledger, fund) -> None:
    fund("alice")
    experiment_id = ledger.create_experiment(SECONDARY, 10, 100)
    ledger.deposit("alice", experiment_id, 10)

    with pytest.raises(RoleMismatchError):
        ledger.admin_withdraw(SECONDARY, experiment_id)
    with pytest.raises(RoleMismatchError):
        ledger.admin_withdraw("alice", experiment_id)


def test_set_primary_hands_over_authority(ledger, notifications) -> None:
    ledger.set_primary(PRIMARY, "new-primary")

    assert ledger.role_of("new-primary") == Role.PRIMARY
    assert ledger.role_of(PRIMARY) == Role.NONE
    assert notifications[-1].kind == NotificationKind.ROLE_CHANGED
    assert notifications[-1].data["role"] == "primary"

    with pytest.raises(RoleMismatchError):
        ledger.create_experiment(PRIMARY, 10, 100)
    assert ledger.create_experiment("new-primary", 10, 100) == 0


def test_set_primary_rejects_empty_identity(ledger) -> None:
    with pytest.raises(InvalidIdentityError):
        ledger.set_primary(PRIMARY, "")
    assert ledger.roles().primary == PRIMARY


def test_set_secondary_requires_primary(ledger) -> None:
    with pytest.raises(RoleMismatchError):
        ledger.set_secondary(SECONDARY, "someone-else")

    ledger.set_secondary(PRIMARY, None)
    assert ledger.roles().secondary is None
    assert ledger.role_of(SECONDARY) == Role.NONE
