"""
auth/policy.py -- Role policy table for user administration and catalog scope.

ROLE_POLICIES is the single source of truth for what each role may see and
manage. Route handlers ask the helpers below instead of comparing role strings
inline.

  role        admin  sees roles                        manages roles     posisi-scoped
  user        no     -                                 -                 no
  partshop    no     -                                 -                 yes
  admin       yes    user, admin                       user              no
  superadmin  yes    user, admin, superadmin, partshop all four          no

Nobody may delete their own account; that check lives in the users router
because it needs the actor's id, not just the role.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping


@dataclass(frozen=True)
class RolePolicy:
    is_admin: bool
    visible_roles: frozenset[str]
    manageable_roles: frozenset[str]
    posisi_scoped: bool = False


_ALL_ROLES = frozenset({"user", "admin", "superadmin", "partshop"})

ROLE_POLICIES: Mapping[str, RolePolicy] = MappingProxyType(
    {
        "user": RolePolicy(is_admin=False, visible_roles=frozenset(), manageable_roles=frozenset()),
        "partshop": RolePolicy(
            is_admin=False,
            visible_roles=frozenset(),
            manageable_roles=frozenset(),
            posisi_scoped=True,
        ),
        "admin": RolePolicy(
            is_admin=True,
            visible_roles=frozenset({"user", "admin"}),
            manageable_roles=frozenset({"user"}),
        ),
        "superadmin": RolePolicy(is_admin=True, visible_roles=_ALL_ROLES, manageable_roles=_ALL_ROLES),
    }
)

# Unknown roles get nothing.
_NO_ACCESS = RolePolicy(is_admin=False, visible_roles=frozenset(), manageable_roles=frozenset())


def policy_for(role: str) -> RolePolicy:
    return ROLE_POLICIES.get(role, _NO_ACCESS)


def can_administer(role: str) -> bool:
    """True if the role may reach the /users endpoints at all."""
    return policy_for(role).is_admin


def visible_roles(role: str) -> frozenset[str]:
    return policy_for(role).visible_roles


def can_manage(actor_role: str, target_role: str) -> bool:
    """True if actor_role may create, alter or delete an account of target_role."""
    return target_role in policy_for(actor_role).manageable_roles


def visible_posisi(role: str, posisi: str | None, all_posisi: Iterable[str]) -> frozenset[str]:
    """Return the posisi values whose catalog entries the role may see.

    A posisi-scoped role sees only its own posisi (nothing if it has none);
    every other role sees all of them.
    """
    if policy_for(role).posisi_scoped:
        return frozenset({posisi}) if posisi else frozenset()
    return frozenset(all_posisi)
