"""
catalog/seed.py -- Bulk import of a catalog JSON export and default accounts.

Used by `python main.py seed`. The JSON shape is the one GET /api/catalog
returns (and the browser client exports):

    {"illustrations": [
        {"id": "Truck Heavy-duty", "name": "...", "model": "...", "posisi": "Engine",
         "image": "/uploads/x.png", "size": {"width": 1200, "height": 800},
         "parts": [{"id": "P1", "code": "C-1", "name": "Bolt", "price": 100}],
         "hotspots": [{"partId": "P1", "x": 10, "y": 20, "r": 8},
                      {"partIds": ["P1", "P2"], "x": 50, "y": 60, "r": 8}]}
    ]}

Illustrations are matched to existing rows by (jenis, name, model) so running
the seed twice does not duplicate them; their structure is replaced. Seeded
part prices overwrite stored ones, as an import should.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from catalog.models import Hotspot, Illustration, Part
from catalog.store import CatalogStore

logger = logging.getLogger("partkatalog.seed")


@dataclass
class SeedReport:
    illustrations_created: int = 0
    illustrations_updated: int = 0
    parts: int = 0
    hotspots: int = 0
    skipped: int = 0


def load_catalog(store: CatalogStore, data: dict) -> SeedReport:
    """Import every illustration in data. Entries missing required fields are skipped."""
    report = SeedReport()
    existing = {(i.jenis, i.name, i.model): i.iid for i in store.list_illustrations()}

    for raw in data.get("illustrations") or []:
        illustration = _parse_illustration(raw)
        if illustration is None:
            report.skipped += 1
            logger.warning("Skipping illustration without id/name/image/size: %r", raw.get("name"))
            continue

        key = (illustration.jenis, illustration.name, illustration.model)
        iid = existing.get(key)
        if iid is None:
            iid = store.create_illustration(illustration)
            existing[key] = iid
            report.illustrations_created += 1
        else:
            store.update_illustration(
                iid,
                posisi=illustration.posisi,
                nama_posisi=illustration.nama_posisi,
                no_posisi=illustration.no_posisi,
                image=illustration.image,
                width=illustration.width,
                height=illustration.height,
            )
            report.illustrations_updated += 1

        parts = [_parse_part(p) for p in raw.get("parts") or [] if p.get("id")]
        hotspots = [h for h in (_parse_hotspot(h) for h in raw.get("hotspots") or []) if h is not None]
        store.replace_structure(iid, parts, hotspots, overwrite_prices=True)
        report.parts += len(parts)
        report.hotspots += len(hotspots)

    logger.info(
        "Catalog seeded: %d created, %d updated, %d skipped",
        report.illustrations_created,
        report.illustrations_updated,
        report.skipped,
    )
    return report


def ensure_user(store: UserStore, username: str, password: str, role: str, posisi: str | None = None) -> bool:
    """Create the account if the username is free. Returns True if created."""
    if store.get_by_username(username) is not None:
        return False
    store.create_user(User(username=username, role=role, posisi=posisi, password_hash=hash_password(password)))
    logger.info("Created %s account %r", role, username)
    return True


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def _parse_illustration(raw: dict) -> Illustration | None:
    size = raw.get("size") or {}
    width = size.get("width", raw.get("width"))
    height = size.get("height", raw.get("height"))
    if not raw.get("id") or not raw.get("name") or not raw.get("image") or width is None or height is None:
        return None
    return Illustration(
        jenis=str(raw["id"]),
        name=str(raw["name"]),
        image=str(raw["image"]),
        width=int(width),
        height=int(height),
        posisi=raw.get("posisi") or "Engine",
        model=raw.get("model") or "",
        nama_posisi=raw.get("nama_posisi") or "",
        no_posisi=raw.get("no_posisi") or "",
    )


def _parse_part(raw: dict) -> Part:
    price = raw.get("price")
    return Part(
        id=str(raw["id"]),
        code=str(raw.get("code") or raw["id"]),
        name=str(raw.get("name") or ""),
        price=int(price) if isinstance(price, (int, float)) else 0,
        additional=raw.get("additional") if isinstance(raw.get("additional"), str) else "",
    )


def _parse_hotspot(raw: dict) -> Hotspot | None:
    ids = raw.get("partIds") if isinstance(raw.get("partIds"), list) else [raw.get("partId")]
    ids = [str(pid) for pid in ids if pid]
    if not ids or any(raw.get(k) is None for k in ("x", "y", "r")):
        return None
    return Hotspot(x=float(raw["x"]), y=float(raw["y"]), r=float(raw["r"]), part_ids=ids)
