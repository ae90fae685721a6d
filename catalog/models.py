"""
catalog/models.py -- Domain dataclasses for the parts catalog.

These are pure data containers with zero logic. Persistence and the
structure-replacement rules live in catalog/store.py.

An Illustration is one exploded-view drawing of a vehicle assembly. Parts are
shared across illustrations (many-to-many); a Hotspot is a clickable circle on
one illustration pointing at one or more of its parts.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Part:
    """A catalog part. id is the caller-chosen string key, not a DB sequence."""

    id: str
    code: str
    name: str
    price: int = 0
    additional: str = ""


@dataclass
class Hotspot:
    """A circle (x, y, r) in image pixel space linked to one or more part ids."""

    x: float
    y: float
    r: float
    part_ids: list[str] = field(default_factory=list)
    id: int | None = None


@dataclass
class Illustration:
    """One diagram. jenis is the vehicle class; iid is the database key.

    parts and hotspots stay empty unless the store was asked to load the
    structure (get_illustration, catalog).
    """

    jenis: str  # "Truck Heavy-duty" | "Truck Medium-duty" | "Truck Light-duty"
    name: str
    image: str
    width: int
    height: int
    posisi: str = "Engine"
    model: str = ""
    nama_posisi: str = ""
    no_posisi: str = ""
    iid: int | None = None
    parts: list[Part] = field(default_factory=list)
    hotspots: list[Hotspot] = field(default_factory=list)
