"""
tests/test_policy.py -- Unit tests for auth/policy.py.
"""

from __future__ import annotations

import pytest

from auth.policy import ROLE_POLICIES, can_administer, can_manage, visible_posisi, visible_roles
from core.config import POSISI_VALUES, ROLES


def test_every_configured_role_has_a_policy():
    assert set(ROLE_POLICIES) == set(ROLES)


def test_policy_table_is_read_only():
    with pytest.raises(TypeError):
        ROLE_POLICIES["user"] = ROLE_POLICIES["superadmin"]  # type: ignore[index]


@pytest.mark.parametrize(
    "role,expected",
    [("user", False), ("partshop", False), ("admin", True), ("superadmin", True), ("nobody", False)],
)
def test_can_administer(role, expected):
    assert can_administer(role) is expected


def test_admin_visibility_excludes_superadmin_and_partshop():
    assert visible_roles("admin") == frozenset({"user", "admin"})


def test_superadmin_sees_all_roles():
    assert visible_roles("superadmin") == frozenset(ROLES)


def test_admin_manages_plain_users():
    assert can_manage("admin", "user")


@pytest.mark.parametrize("target", ["admin", "superadmin", "partshop"])
def test_admin_cannot_manage_privileged_roles(target):
    assert not can_manage("admin", target)


@pytest.mark.parametrize("target", ROLES)
def test_superadmin_manages_every_role(target):
    assert can_manage("superadmin", target)


def test_unknown_role_gets_nothing():
    assert visible_roles("ghost") == frozenset()
    assert not can_manage("ghost", "user")


def test_partshop_sees_only_its_posisi():
    assert visible_posisi("partshop", "Engine", POSISI_VALUES) == frozenset({"Engine"})


def test_partshop_without_posisi_sees_nothing():
    assert visible_posisi("partshop", None, POSISI_VALUES) == frozenset()


@pytest.mark.parametrize("role", ["user", "admin", "superadmin"])
def test_other_roles_see_every_posisi(role):
    assert visible_posisi(role, "Engine", POSISI_VALUES) == frozenset(POSISI_VALUES)
