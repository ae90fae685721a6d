"""
catalog/store.py -- SQLAlchemy-backed persistence layer for the parts catalog.

Uses SQLAlchemy Core (not ORM) so the dataclasses in catalog/models.py remain
the authoritative domain representation. Swapping SQLite for MySQL or
PostgreSQL is a connection string change.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Transactions:
  Anything that touches more than one table (structure replacement, linking or
  unlinking a part, deleting an illustration or a part) runs inside a single
  engine.begin() block -- all or nothing. Join-table rows are removed by hand
  rather than relying on FOREIGN KEY cascades, which SQLite leaves off by
  default.

Part upserts are portable select-then-write inside the open transaction (no
dialect-specific ON CONFLICT). The structure editor and part linking never
overwrite an existing price; only the parts endpoints do.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CatalogStore()                                # SQLite default
    store = CatalogStore("mysql+pymysql://u:pw@host/db")  # MySQL
    iid = store.create_illustration(illustration)
    store.replace_structure(iid, parts, hotspots)
    store.close()
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from catalog.models import Hotspot, Illustration, Part

_DEFAULT_DB_URL = "sqlite:///partkatalog.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_illustrations = Table(
    "illustrations",
    metadata,
    Column("iid", Integer, primary_key=True, autoincrement=True),
    Column("jenis", String(64), nullable=False),
    Column("name", String(255), nullable=False),
    Column("model", String(255), nullable=False, server_default=""),
    Column("posisi", String(64), nullable=False, server_default="Engine"),
    Column("nama_posisi", String(255), nullable=False, server_default=""),
    Column("no_posisi", String(64), nullable=False, server_default=""),
    Column("image", String(512), nullable=False),
    Column("width", Integer, nullable=False),
    Column("height", Integer, nullable=False),
)

_parts = Table(
    "parts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("code", String(128), nullable=False),
    Column("name", String(255), nullable=False),
    Column("price", Integer, nullable=False, server_default="0"),
    Column("additional", Text),
)

_illustration_parts = Table(
    "illustration_parts",
    metadata,
    Column("illustration_iid", Integer, nullable=False),
    Column("part_id", String(64), nullable=False),
    Column("position", Integer, nullable=False, server_default="0"),
    UniqueConstraint("illustration_iid", "part_id", name="uq_illustration_part"),
)

_hotspots = Table(
    "hotspots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("illustration_iid", Integer, nullable=False, index=True),
    Column("x", Float, nullable=False),
    Column("y", Float, nullable=False),
    Column("r", Float, nullable=False),
)

_hotspot_parts = Table(
    "hotspot_parts",
    metadata,
    Column("hotspot_id", Integer, nullable=False),
    Column("part_id", String(64), nullable=False),
    Column("position", Integer, nullable=False, server_default="0"),
    UniqueConstraint("hotspot_id", "part_id", name="uq_hotspot_part"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _dedupe(ids: Iterable[str]) -> list[str]:
    """Drop repeats and blanks, keeping first-seen order."""
    seen: dict[str, None] = {}
    for pid in ids:
        if pid:
            seen.setdefault(pid, None)
    return list(seen)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Illustrations
    # ------------------------------------------------------------------

    def has_illustrations(self) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_illustrations)).scalar()
        return (count or 0) > 0

    def list_illustrations(self, posisi: frozenset[str] | None = None) -> list[Illustration]:
        """Return illustration headers (no parts/hotspots) ordered by iid.

        posisi, when given, restricts the result to those posisi values.
        """
        stmt = _illustrations.select().order_by(_illustrations.c.iid)
        if posisi is not None:
            stmt = stmt.where(_illustrations.c.posisi.in_(sorted(posisi)))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_illustration(r) for r in rows]

    def get_illustration(self, iid: int) -> Illustration | None:
        """Fetch one illustration with its parts and hotspots. None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_illustrations.select().where(_illustrations.c.iid == iid)).fetchone()
            if row is None:
                return None
            illustration = _row_to_illustration(row)
            self._load_structure(conn, [illustration])
        return illustration

    def catalog(self, posisi: frozenset[str] | None = None) -> list[Illustration]:
        """Return every illustration (optionally posisi-filtered) with structure loaded.

        Three queries in total regardless of catalog size.
        """
        stmt = _illustrations.select().order_by(_illustrations.c.iid)
        if posisi is not None:
            stmt = stmt.where(_illustrations.c.posisi.in_(sorted(posisi)))
        with self.engine.connect() as conn:
            items = [_row_to_illustration(r) for r in conn.execute(stmt).fetchall()]
            self._load_structure(conn, items)
        return items

    def create_illustration(self, illustration: Illustration) -> int:
        """Insert an illustration header and return its iid."""
        with self.engine.connect() as conn:
            result = conn.execute(_illustrations.insert().values(**_illustration_values(illustration)))
            conn.commit()
            return result.inserted_primary_key[0]

    def update_illustration(self, iid: int, **fields) -> bool:
        """Update header fields on an existing illustration.

        Accepts any subset of: jenis, name, model, posisi, nama_posisi,
        no_posisi, image, width, height. Returns False if iid was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_illustrations.update().where(_illustrations.c.iid == iid).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_illustration(self, iid: int) -> bool:
        """Delete an illustration with its hotspots and part links. Parts survive."""
        with self.engine.begin() as conn:
            if not _illustration_exists(conn, iid):
                return False
            _delete_hotspots(conn, iid)
            conn.execute(_illustration_parts.delete().where(_illustration_parts.c.illustration_iid == iid))
            conn.execute(_illustrations.delete().where(_illustrations.c.iid == iid))
        return True

    # ------------------------------------------------------------------
    # Structure (parts + hotspots of one illustration)
    # ------------------------------------------------------------------

    def replace_structure(
        self, iid: int, parts: list[Part], hotspots: list[Hotspot], overwrite_prices: bool = False
    ) -> bool:
        """Replace an illustration's part list and hotspots in one transaction.

        Parts are upserted, keeping stored prices unless overwrite_prices is
        set. Links are rewritten in the given order and every hotspot is
        rebuilt from scratch. Returns False if iid does not exist; nothing is
        written in that case.
        """
        with self.engine.begin() as conn:
            if not _illustration_exists(conn, iid):
                return False
            for part in parts:
                _upsert_part(conn, part, keep_price=not overwrite_prices)
            conn.execute(_illustration_parts.delete().where(_illustration_parts.c.illustration_iid == iid))
            for position, pid in enumerate(_dedupe(p.id for p in parts)):
                conn.execute(_illustration_parts.insert().values(illustration_iid=iid, part_id=pid, position=position))
            _delete_hotspots(conn, iid)
            for hotspot in hotspots:
                result = conn.execute(
                    _hotspots.insert().values(illustration_iid=iid, x=hotspot.x, y=hotspot.y, r=hotspot.r)
                )
                hotspot_id = result.inserted_primary_key[0]
                for position, pid in enumerate(_dedupe(hotspot.part_ids)):
                    conn.execute(_hotspot_parts.insert().values(hotspot_id=hotspot_id, part_id=pid, position=position))
        return True

    def link_part(self, iid: int, part: Part) -> bool:
        """Upsert a part (keeping any stored price) and attach it to the illustration.

        Linking an already-linked part is a no-op. Returns False if iid does
        not exist.
        """
        with self.engine.begin() as conn:
            if not _illustration_exists(conn, iid):
                return False
            _upsert_part(conn, part, keep_price=True)
            linked = conn.execute(
                select(_illustration_parts.c.part_id).where(
                    (_illustration_parts.c.illustration_iid == iid) & (_illustration_parts.c.part_id == part.id)
                )
            ).fetchone()
            if linked is None:
                next_position = conn.execute(
                    select(func.coalesce(func.max(_illustration_parts.c.position) + 1, 0)).where(
                        _illustration_parts.c.illustration_iid == iid
                    )
                ).scalar()
                conn.execute(
                    _illustration_parts.insert().values(illustration_iid=iid, part_id=part.id, position=next_position)
                )
        return True

    def unlink_part(self, iid: int, part_id: str) -> bool:
        """Detach a part from an illustration and from its hotspots there.

        Hotspots left without any part are removed. Returns False if the
        illustration or the link does not exist.
        """
        with self.engine.begin() as conn:
            if not _illustration_exists(conn, iid):
                return False
            hotspot_ids = select(_hotspots.c.id).where(_hotspots.c.illustration_iid == iid)
            conn.execute(
                _hotspot_parts.delete().where(
                    _hotspot_parts.c.hotspot_id.in_(hotspot_ids) & (_hotspot_parts.c.part_id == part_id)
                )
            )
            _delete_empty_hotspots(conn, iid)
            result = conn.execute(
                _illustration_parts.delete().where(
                    (_illustration_parts.c.illustration_iid == iid) & (_illustration_parts.c.part_id == part_id)
                )
            )
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Parts
    # ------------------------------------------------------------------

    def list_parts(self) -> list[Part]:
        """Return all parts ordered by code."""
        with self.engine.connect() as conn:
            rows = conn.execute(_parts.select().order_by(_parts.c.code, _parts.c.id)).fetchall()
        return [_row_to_part(r) for r in rows]

    def get_part(self, part_id: str) -> Part | None:
        with self.engine.connect() as conn:
            row = conn.execute(_parts.select().where(_parts.c.id == part_id)).fetchone()
        return _row_to_part(row) if row is not None else None

    def upsert_part(self, part: Part) -> None:
        """Insert or fully overwrite a part, price included."""
        with self.engine.begin() as conn:
            _upsert_part(conn, part, keep_price=False)

    def update_part(self, part: Part) -> bool:
        """Overwrite an existing part. Returns False if part.id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _parts.update()
                .where(_parts.c.id == part.id)
                .values(code=part.code, name=part.name, price=part.price, additional=part.additional)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_part(self, part_id: str) -> bool:
        """Delete a part everywhere: links, hotspot references, then the part.

        Hotspots that pointed only at this part are removed with it.
        """
        with self.engine.begin() as conn:
            affected = [
                r.illustration_iid
                for r in conn.execute(
                    select(_hotspots.c.illustration_iid.distinct())
                    .join(_hotspot_parts, _hotspot_parts.c.hotspot_id == _hotspots.c.id)
                    .where(_hotspot_parts.c.part_id == part_id)
                ).fetchall()
            ]
            conn.execute(_hotspot_parts.delete().where(_hotspot_parts.c.part_id == part_id))
            for iid in affected:
                _delete_empty_hotspots(conn, iid)
            conn.execute(_illustration_parts.delete().where(_illustration_parts.c.part_id == part_id))
            result = conn.execute(_parts.delete().where(_parts.c.id == part_id))
            return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_structure(self, conn: Connection, items: list[Illustration]) -> None:
        """Attach parts and hotspots to the given illustrations in place."""
        if not items:
            return
        by_iid = {item.iid: item for item in items}
        iids = sorted(by_iid)

        part_rows = conn.execute(
            select(_illustration_parts.c.illustration_iid, _parts)
            .join(_parts, _parts.c.id == _illustration_parts.c.part_id)
            .where(_illustration_parts.c.illustration_iid.in_(iids))
            .order_by(_illustration_parts.c.illustration_iid, _illustration_parts.c.position, _parts.c.id)
        ).fetchall()
        for row in part_rows:
            by_iid[row.illustration_iid].parts.append(_row_to_part(row))

        hotspot_rows = conn.execute(
            select(_hotspots, _hotspot_parts.c.part_id)
            .select_from(_hotspots.outerjoin(_hotspot_parts, _hotspot_parts.c.hotspot_id == _hotspots.c.id))
            .where(_hotspots.c.illustration_iid.in_(iids))
            .order_by(_hotspots.c.illustration_iid, _hotspots.c.id, _hotspot_parts.c.position)
        ).fetchall()
        hotspots: dict[int, Hotspot] = {}
        owners: dict[int, list[Hotspot]] = defaultdict(list)
        for row in hotspot_rows:
            hotspot = hotspots.get(row.id)
            if hotspot is None:
                hotspot = Hotspot(id=row.id, x=row.x, y=row.y, r=row.r)
                hotspots[row.id] = hotspot
                owners[row.illustration_iid].append(hotspot)
            if row.part_id is not None:
                hotspot.part_ids.append(row.part_id)
        for iid, owned in owners.items():
            by_iid[iid].hotspots = owned


# ---------------------------------------------------------------------------
# Transaction helpers (operate on an open connection)
# ---------------------------------------------------------------------------


def _illustration_exists(conn: Connection, iid: int) -> bool:
    return conn.execute(select(_illustrations.c.iid).where(_illustrations.c.iid == iid)).fetchone() is not None


def _upsert_part(conn: Connection, part: Part, keep_price: bool) -> None:
    exists = conn.execute(select(_parts.c.id).where(_parts.c.id == part.id)).fetchone() is not None
    if not exists:
        conn.execute(
            _parts.insert().values(
                id=part.id, code=part.code, name=part.name, price=part.price, additional=part.additional
            )
        )
        return
    values = {"code": part.code, "name": part.name, "additional": part.additional}
    if not keep_price:
        values["price"] = part.price
    conn.execute(_parts.update().where(_parts.c.id == part.id).values(**values))


def _delete_hotspots(conn: Connection, iid: int) -> None:
    hotspot_ids = select(_hotspots.c.id).where(_hotspots.c.illustration_iid == iid)
    conn.execute(_hotspot_parts.delete().where(_hotspot_parts.c.hotspot_id.in_(hotspot_ids)))
    conn.execute(_hotspots.delete().where(_hotspots.c.illustration_iid == iid))


def _delete_empty_hotspots(conn: Connection, iid: int) -> None:
    linked = select(_hotspot_parts.c.hotspot_id)
    conn.execute(_hotspots.delete().where((_hotspots.c.illustration_iid == iid) & _hotspots.c.id.not_in(linked)))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _illustration_values(illustration: Illustration) -> dict:
    return {
        "jenis": illustration.jenis,
        "name": illustration.name,
        "model": illustration.model or "",
        "posisi": illustration.posisi,
        "nama_posisi": illustration.nama_posisi or "",
        "no_posisi": illustration.no_posisi or "",
        "image": illustration.image,
        "width": illustration.width,
        "height": illustration.height,
    }


def _row_to_illustration(row) -> Illustration:
    return Illustration(
        iid=row.iid,
        jenis=row.jenis,
        name=row.name,
        model=row.model or "",
        posisi=row.posisi or "Engine",
        nama_posisi=row.nama_posisi or "",
        no_posisi=row.no_posisi or "",
        image=row.image,
        width=row.width,
        height=row.height,
    )


def _row_to_part(row) -> Part:
    return Part(
        id=row.id,
        code=row.code,
        name=row.name,
        price=row.price or 0,
        additional=row.additional or "",
    )
