"""Two-tier access control resolved per call against stored identities."""

import logging

from .exceptions import RoleMismatchError
from .models import Role, RoleAssignment

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({Role.PRIMARY, Role.SECONDARY})
PRIMARY_ONLY = frozenset({Role.PRIMARY})


def resolve_role(caller: str, roles: RoleAssignment) -> Role:
    """Map a caller identity onto its privilege tier."""
    if caller == roles.primary:
        return Role.PRIMARY
    if roles.secondary is not None and caller == roles.secondary:
        return Role.SECONDARY
    return Role.NONE


def require_role(
    caller: str,
    roles: RoleAssignment,
    allowed: frozenset[Role],
    action: str,
    experiment_id: int | None = None,
) -> Role:
    role = resolve_role(caller, roles)
    if role not in allowed:
        logger.warning(f"Rejected {action} by {caller} (role={role.value})")
        required = " or ".join(sorted(r.value for r in allowed))
        raise RoleMismatchError(
            f"{action} requires {required} role", experiment_id=experiment_id
        )
    return role
