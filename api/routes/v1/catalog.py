"""
api/routes/v1/catalog.py -- Illustration, part, hotspot and metadata endpoints.

Routes:
  GET    /api/illustrations                          -- headers only
  POST   /api/illustrations                          -- create (auth)
  GET    /api/illustrations/iid/{iid}                -- header + parts + hotspots
  PUT    /api/illustrations/iid/{iid}                -- edit header (auth)
  DELETE /api/illustrations/iid/{iid}                -- delete with hotspots/links (auth)
  PUT    /api/illustrations/iid/{iid}/structure      -- replace parts + hotspots (auth)
  POST   /api/illustrations/iid/{iid}/parts          -- link one part (auth)
  DELETE /api/illustrations/iid/{iid}/parts/{pid}    -- unlink one part (auth)
  GET    /api/catalog                                -- everything, for the viewer
  GET    /api/parts                                  -- all parts by code
  POST   /api/parts                                  -- insert or overwrite (auth)
  PUT    /api/parts/{id}                             -- edit (auth)
  DELETE /api/parts/{id}                             -- delete everywhere (auth)
  GET    /api/meta/illustrations/jenis-enum
  GET    /api/meta/illustrations/posisi-enum

Read routes are public. A partshop session is scoped to its own posisi:
illustrations outside it are filtered from lists and answer 404 directly.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import (
    CatalogResponse,
    IllustrationCreate,
    IllustrationDetail,
    IllustrationHeader,
    IllustrationUpdate,
    LinkPartRequest,
    OkResponse,
    PartCreate,
    PartResponse,
    PartUpdate,
    StructureRequest,
)
from auth.dependencies import get_current_user, try_get_current_user
from auth.models import SessionClaims
from auth.policy import visible_posisi
from catalog.models import Hotspot, Part
from catalog.store import CatalogStore

logger = logging.getLogger("partkatalog.catalog")

# Auth policy:
# - GET routes:            public, posisi-scoped for partshop sessions
# - POST/PUT/DELETE:       any authenticated session (get_current_user)
router = APIRouter()


def _store(request: Request) -> CatalogStore:
    return request.app.state.catalog_store


def _posisi_scope(request: Request, viewer: SessionClaims | None) -> frozenset[str] | None:
    """Return the posisi filter for the viewer, or None for unrestricted."""
    if viewer is None:
        return None
    all_posisi = request.app.state.config.posisi_values
    scope = visible_posisi(viewer.role, viewer.posisi, all_posisi)
    return None if scope == frozenset(all_posisi) else scope


def _check_enums(request: Request, jenis: str | None, posisi: str) -> None:
    config = request.app.state.config
    if jenis is not None and jenis not in config.jenis_values:
        raise HTTPException(status_code=400, detail="invalid_jenis")
    if posisi not in config.posisi_values:
        raise HTTPException(status_code=400, detail="invalid_posisi")


# ---------------------------------------------------------------------------
# Illustrations
# ---------------------------------------------------------------------------


@router.get("/illustrations", response_model=list[IllustrationHeader])
def list_illustrations(
    request: Request,
    viewer: SessionClaims | None = Depends(try_get_current_user),
) -> list[IllustrationHeader]:
    items = _store(request).list_illustrations(posisi=_posisi_scope(request, viewer))
    return [IllustrationHeader.from_illustration(i) for i in items]


@router.post("/illustrations", response_model=IllustrationHeader, status_code=201)
def create_illustration(
    request: Request,
    body: IllustrationCreate,
    current_user: SessionClaims = Depends(get_current_user),
) -> IllustrationHeader:
    _check_enums(request, body.id, body.posisi)
    store = _store(request)
    iid = store.create_illustration(body.to_illustration())
    logger.info("%s created illustration iid=%s (%s)", current_user.username, iid, body.name)
    created = store.get_illustration(iid)
    if created is None:
        raise HTTPException(status_code=500, detail="internal_error")
    return IllustrationHeader.from_illustration(created)


@router.get("/illustrations/iid/{iid}", response_model=IllustrationDetail)
def get_illustration(
    request: Request,
    iid: int,
    viewer: SessionClaims | None = Depends(try_get_current_user),
) -> IllustrationDetail:
    illustration = _store(request).get_illustration(iid)
    if illustration is None:
        raise HTTPException(status_code=404, detail="not_found")
    scope = _posisi_scope(request, viewer)
    if scope is not None and illustration.posisi not in scope:
        raise HTTPException(status_code=404, detail="not_found")
    return IllustrationDetail.from_illustration(illustration)


@router.put("/illustrations/iid/{iid}", response_model=IllustrationHeader)
def update_illustration(
    request: Request,
    iid: int,
    body: IllustrationUpdate,
    current_user: SessionClaims = Depends(get_current_user),
) -> IllustrationHeader:
    """Edit the header. Sending id changes the jenis; omitting it keeps it."""
    jenis = body.id or None
    _check_enums(request, jenis, body.posisi)
    fields = body.model_dump(exclude={"id"})
    if jenis is not None:
        fields["jenis"] = jenis
    store = _store(request)
    if not store.update_illustration(iid, **fields):
        raise HTTPException(status_code=404, detail="not_found")
    updated = store.get_illustration(iid)
    if updated is None:
        raise HTTPException(status_code=404, detail="not_found")
    return IllustrationHeader.from_illustration(updated)


@router.delete("/illustrations/iid/{iid}", response_model=OkResponse)
def delete_illustration(
    request: Request,
    iid: int,
    current_user: SessionClaims = Depends(get_current_user),
) -> OkResponse:
    if not _store(request).delete_illustration(iid):
        raise HTTPException(status_code=404, detail="not_found")
    logger.info("%s deleted illustration iid=%s", current_user.username, iid)
    return OkResponse()


@router.put("/illustrations/iid/{iid}/structure", response_model=OkResponse)
def replace_structure(
    request: Request,
    iid: int,
    body: StructureRequest,
    current_user: SessionClaims = Depends(get_current_user),
) -> OkResponse:
    """Replace the illustration's parts and hotspots in one transaction.

    Every hotspot must reference at least one part.
    """
    hotspots: list[Hotspot] = []
    for h in body.hotspots:
        ids = h.referenced_ids()
        if not ids:
            raise HTTPException(status_code=400, detail="bad_request")
        hotspots.append(Hotspot(x=h.x, y=h.y, r=h.r, part_ids=ids))
    parts = [p.to_part() for p in body.parts]
    if not _store(request).replace_structure(iid, parts, hotspots):
        raise HTTPException(status_code=404, detail="not_found")
    logger.info(
        "%s replaced structure of iid=%s (%d parts, %d hotspots)",
        current_user.username,
        iid,
        len(parts),
        len(hotspots),
    )
    return OkResponse()


@router.post("/illustrations/iid/{iid}/parts", response_model=PartResponse, status_code=201)
def link_part(
    request: Request,
    iid: int,
    body: LinkPartRequest,
    current_user: SessionClaims = Depends(get_current_user),
) -> PartResponse:
    """Attach a part, creating it if needed. An existing part keeps its price."""
    part = Part(id=body.part_id, code=body.code, name=body.name, price=body.price)
    store = _store(request)
    if not store.link_part(iid, part):
        raise HTTPException(status_code=404, detail="not_found")
    stored = store.get_part(body.part_id)
    return PartResponse.from_part(stored or part)


@router.delete("/illustrations/iid/{iid}/parts/{pid}", response_model=OkResponse)
def unlink_part(
    request: Request,
    iid: int,
    pid: str,
    current_user: SessionClaims = Depends(get_current_user),
) -> OkResponse:
    if not _store(request).unlink_part(iid, pid):
        raise HTTPException(status_code=404, detail="not_found")
    return OkResponse()


# ---------------------------------------------------------------------------
# Full catalog
# ---------------------------------------------------------------------------


@router.get("/catalog", response_model=CatalogResponse)
def get_catalog(
    request: Request,
    viewer: SessionClaims | None = Depends(try_get_current_user),
) -> CatalogResponse:
    """Every illustration with parts and hotspots, scoped for partshop sessions."""
    items = _store(request).catalog(posisi=_posisi_scope(request, viewer))
    return CatalogResponse(illustrations=[IllustrationDetail.from_illustration(i) for i in items])


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------


@router.get("/parts", response_model=list[PartResponse])
def list_parts(request: Request) -> list[PartResponse]:
    return [PartResponse.from_part(p) for p in _store(request).list_parts()]


@router.post("/parts", response_model=PartResponse, status_code=201)
def upsert_part(
    request: Request,
    body: PartCreate,
    current_user: SessionClaims = Depends(get_current_user),
) -> PartResponse:
    """Insert a part or overwrite every field of an existing one."""
    part = body.to_part(body.id)
    _store(request).upsert_part(part)
    return PartResponse.from_part(part)


@router.put("/parts/{part_id}", response_model=PartResponse)
def update_part(
    request: Request,
    part_id: str,
    body: PartUpdate,
    current_user: SessionClaims = Depends(get_current_user),
) -> PartResponse:
    part = body.to_part(part_id)
    if not _store(request).update_part(part):
        raise HTTPException(status_code=404, detail="not_found")
    return PartResponse.from_part(part)


@router.delete("/parts/{part_id}", response_model=OkResponse)
def delete_part(
    request: Request,
    part_id: str,
    current_user: SessionClaims = Depends(get_current_user),
) -> OkResponse:
    if not _store(request).delete_part(part_id):
        raise HTTPException(status_code=404, detail="not_found")
    logger.info("%s deleted part %s", current_user.username, part_id)
    return OkResponse()


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@router.get("/meta/illustrations/jenis-enum", response_model=list[str])
async def jenis_enum(request: Request) -> list[str]:
    return list(request.app.state.config.jenis_values)


@router.get("/meta/illustrations/posisi-enum", response_model=list[str])
async def posisi_enum(request: Request) -> list[str]:
    return list(request.app.state.config.posisi_values)
