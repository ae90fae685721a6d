"""
tests/test_seed.py -- Tests for catalog/seed.py (catalog JSON import, default accounts).
"""

from __future__ import annotations

import copy
import uuid
from unittest.mock import patch

import pytest

from auth.store import UserStore
from auth.tokens import verify_password
from catalog.seed import ensure_user, load_catalog
from catalog.store import CatalogStore

SAMPLE = {
    "illustrations": [
        {
            "id": "Truck Heavy-duty",
            "name": "Cylinder head",
            "model": "FM-260",
            "posisi": "Engine",
            "image": "/uploads/head.png",
            "size": {"width": 1200, "height": 800},
            "parts": [
                {"id": "P1", "code": "C-1", "name": "Bolt", "price": 100},
                {"id": "P2", "code": "C-2", "name": "Nut", "price": 50.0},
            ],
            "hotspots": [
                {"partId": "P1", "x": 10, "y": 20, "r": 8},
                {"partIds": ["P1", "P2"], "x": 50, "y": 60, "r": 8},
                {"x": 1, "y": 1, "r": 1},
            ],
        },
        {"id": "Truck Light-duty", "name": "No image", "size": {"width": 10, "height": 10}},
    ]
}


@pytest.fixture
def catalog_store():
    s = CatalogStore(db_url=f"sqlite:///file:test_seed_catalog_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture
def user_store():
    s = UserStore(db_url=f"sqlite:///file:test_seed_users_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


def test_load_catalog_imports_structure(catalog_store):
    report = load_catalog(catalog_store, SAMPLE)
    assert report.illustrations_created == 1
    assert report.skipped == 1
    assert report.parts == 2
    assert report.hotspots == 2

    (ill,) = catalog_store.catalog()
    assert ill.jenis == "Truck Heavy-duty"
    assert (ill.width, ill.height) == (1200, 800)
    assert [p.id for p in ill.parts] == ["P1", "P2"]
    assert [h.part_ids for h in ill.hotspots] == [["P1"], ["P1", "P2"]]
    assert catalog_store.get_part("P2").price == 50


def test_load_catalog_twice_updates_instead_of_duplicating(catalog_store):
    load_catalog(catalog_store, SAMPLE)
    changed = copy.deepcopy(SAMPLE)
    changed["illustrations"][0]["image"] = "/uploads/head-v2.png"
    changed["illustrations"][0]["parts"][0]["price"] = 175

    report = load_catalog(catalog_store, changed)
    assert report.illustrations_created == 0
    assert report.illustrations_updated == 1

    (ill,) = catalog_store.catalog()
    assert ill.image == "/uploads/head-v2.png"
    assert catalog_store.get_part("P1").price == 175


def test_load_catalog_writes_parts_with_the_structure(catalog_store):
    load_catalog(catalog_store, SAMPLE)
    changed = copy.deepcopy(SAMPLE)
    changed["illustrations"][0]["parts"][1]["price"] = 65

    # Parts, links and hotspots land together; no separate part upsert.
    with patch.object(catalog_store, "upsert_part", side_effect=AssertionError("separate write")):
        load_catalog(catalog_store, changed)
    assert catalog_store.get_part("P2").price == 65


def test_load_catalog_tolerates_empty_input(catalog_store):
    report = load_catalog(catalog_store, {})
    assert report.illustrations_created == 0
    assert not catalog_store.has_illustrations()


def test_ensure_user_creates_once(user_store):
    assert ensure_user(user_store, "admin", "admin123", "admin")
    assert not ensure_user(user_store, "admin", "other-password", "admin")
    stored = user_store.get_by_username("admin")
    assert stored.role == "admin"
    assert verify_password("admin123", stored.password_hash)
