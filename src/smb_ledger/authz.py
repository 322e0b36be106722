# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Authorization layer of the accounting core.

Every service operation receives an explicit ``ActorContext`` which carries
the organization being worked on and the capabilities of the acting user.
Services call ``require(actor, code)`` before touching the database; there is
no ambient "current organization" anywhere in the package.

Permission codes
----------------
- accounts.view / accounts.manage
- journal.view / journal.create / journal.post / journal.cancel
- periods.view / periods.manage / periods.close
- reports.view / reports.export
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from .errors import PermissionDeniedError

logger = logging.getLogger(__name__)

ALL_PERMISSIONS: FrozenSet[str] = frozenset(
    {
        "accounts.view",
        "accounts.manage",
        "journal.view",
        "journal.create",
        "journal.post",
        "journal.cancel",
        "periods.view",
        "periods.manage",
        "periods.close",
        "reports.view",
        "reports.export",
    }
)

_VIEW_PERMISSIONS = frozenset(
    {"accounts.view", "journal.view", "periods.view", "reports.view"}
)

ROLE_DEFAULTS: dict[str, FrozenSet[str]] = {
    "admin": ALL_PERMISSIONS,
    # "Comptable": books, periods and exports.
    "accountant": ALL_PERMISSIONS,
    # Business manager: records documents and reads reports, no closing.
    "manager": _VIEW_PERMISSIONS
    | frozenset({"journal.create", "journal.post", "reports.export"}),
    "viewer": _VIEW_PERMISSIONS,
}


@dataclass(frozen=True)
class ActorContext:
    """
    Immutable context for the current actor (user + organization).

    Attributes:
        organization_id: Tenant every query of the operation is scoped to.
        user_id: Identifier stored in created_by / closed_by columns.
        role: Informative role name ("admin", "accountant", ...).
        perms: Explicit permission codes granted to the actor.
    """

    organization_id: str
    user_id: Optional[str] = None
    role: Optional[str] = None
    perms: FrozenSet[str] = field(default_factory=frozenset)

    def has(self, code: str) -> bool:
        """Check if the actor holds a specific permission."""
        return code in self.perms

    def require(self, code: str) -> None:
        require(self, code)


def actor_for_role(
    organization_id: str,
    role: str,
    user_id: Optional[str] = None,
    *,
    extra_perms: FrozenSet[str] = frozenset(),
) -> ActorContext:
    """
    Build an ActorContext from the default permissions of a role.

    Raises:
        ValueError: if the role is unknown.
    """
    try:
        perms = ROLE_DEFAULTS[role]
    except KeyError as exc:
        known = ", ".join(sorted(ROLE_DEFAULTS))
        raise ValueError(f"Unknown role {role!r}. Known roles: {known}.") from exc

    return ActorContext(
        organization_id=organization_id,
        user_id=user_id,
        role=role,
        perms=frozenset(perms | extra_perms),
    )


def system_actor(organization_id: str) -> ActorContext:
    """Actor with every permission, for CLI and automatic document entries."""
    return ActorContext(
        organization_id=organization_id,
        user_id="system",
        role="admin",
        perms=ALL_PERMISSIONS,
    )


def require(actor: ActorContext, code: str) -> None:
    """
    Raise PermissionDeniedError unless the actor holds ``code``.
    """
    if code not in ALL_PERMISSIONS:
        raise ValueError(f"Unknown permission code: {code!r}")
    if not actor.has(code):
        logger.warning(
            "Permission %s denied to user %s in organization %s",
            code,
            actor.user_id,
            actor.organization_id,
        )
        raise PermissionDeniedError(code, actor.user_id)
