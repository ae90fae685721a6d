"""
API request and response models for the parts catalog REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Enumerated values (role, jenis, posisi) are plain strings here and are checked
by the routers against AppConfig, because each has its own wire error code
(bad_request, invalid_jenis, invalid_posisi) rather than a generic 400.

Wire names follow the browser client: an illustration's jenis travels as "id",
hotspot part references as "partId"/"partIds".
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_serializer

from auth.models import SessionClaims, User
from catalog.models import Hotspot, Illustration, Part

# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

# Identifier fields are stripped; passwords never are, so a padded password
# is verified exactly as it was set.
TrimmedStr = Annotated[str, StringConstraints(strip_whitespace=True)]


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: str


class OkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /login.

    Both fields are optional at the schema level so that a missing field and
    an empty one produce the same 400 bad_request from the session authority.
    """

    username: Optional[TrimmedStr] = Field(default=None, max_length=64)
    password: Optional[str] = Field(default=None, max_length=255)


class SessionUser(BaseModel):
    """Body of a successful login."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    posisi: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "SessionUser":
        return cls(id=claims.id, username=claims.username, role=claims.role, posisi=claims.posisi)


class MeResponse(BaseModel):
    """Decoded claims of the current session (GET /me)."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    posisi: Optional[str] = None
    rev: int
    iat: float
    exp: float

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "MeResponse":
        return cls(**claims.to_dict())


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /users. role defaults to "user"."""

    username: TrimmedStr = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=255)
    role: Optional[TrimmedStr] = Field(default=None, max_length=32)
    posisi: Optional[TrimmedStr] = Field(default=None, max_length=64)


class UserUpdate(BaseModel):
    """Request body for PUT /users/{id}. Omitted fields are left unchanged.

    Supplying password revokes every session of the target user.
    """

    username: Optional[TrimmedStr] = Field(default=None, min_length=1, max_length=64)
    password: Optional[str] = Field(default=None, max_length=255)
    role: Optional[TrimmedStr] = Field(default=None, max_length=32)
    posisi: Optional[TrimmedStr] = Field(default=None, max_length=64)

    def is_empty(self) -> bool:
        return not self.username and not self.role and not self.password and self.posisi is None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    posisi: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            role=user.role,
            posisi=user.posisi,
            created_at=user.created_at.isoformat() if user.created_at else None,
        )


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------


class PartUpdate(BaseModel):
    """Request body for PUT /parts/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    price: int
    additional: str = ""

    def to_part(self, part_id: str) -> Part:
        return Part(id=part_id, code=self.code, name=self.name, price=self.price, additional=self.additional)


class PartCreate(PartUpdate):
    """Request body for POST /parts (insert or overwrite)."""

    id: str = Field(min_length=1, max_length=64)


class PartResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    code: str
    name: str
    price: int
    additional: str = ""

    @classmethod
    def from_part(cls, part: Part) -> "PartResponse":
        return cls(id=part.id, code=part.code, name=part.name, price=part.price, additional=part.additional)


class LinkPartRequest(BaseModel):
    """Request body for POST /illustrations/iid/{iid}/parts."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    part_id: str = Field(alias="partId", min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    price: int


# ---------------------------------------------------------------------------
# Illustrations
# ---------------------------------------------------------------------------


class Size(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int


class IllustrationUpdate(BaseModel):
    """Request body for PUT /illustrations/iid/{iid}.

    id is the jenis; when omitted the stored jenis is kept.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[str] = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    image: str = Field(min_length=1, max_length=512)
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    posisi: str = Field(min_length=1, max_length=64)
    model: str = Field(default="", max_length=255)
    nama_posisi: str = Field(default="", max_length=255)
    no_posisi: str = Field(default="", max_length=64)


class IllustrationCreate(IllustrationUpdate):
    """Request body for POST /illustrations. id (jenis) is required."""

    id: str = Field(min_length=1, max_length=64)

    def to_illustration(self) -> Illustration:
        return Illustration(
            jenis=self.id,
            name=self.name,
            image=self.image,
            width=self.width,
            height=self.height,
            posisi=self.posisi,
            model=self.model,
            nama_posisi=self.nama_posisi,
            no_posisi=self.no_posisi,
        )


class IllustrationHeader(BaseModel):
    model_config = ConfigDict(frozen=True)

    iid: int
    id: str
    name: str
    model: str
    posisi: str
    nama_posisi: str
    no_posisi: str
    image: str
    size: Size

    @classmethod
    def from_illustration(cls, ill: Illustration) -> "IllustrationHeader":
        return cls(**_header_fields(ill))


class HotspotResponse(BaseModel):
    """A hotspot as the client draws it: partId for one part, partIds for several."""

    model_config = ConfigDict(frozen=True)

    part_id: Optional[str] = Field(default=None, serialization_alias="partId")
    part_ids: Optional[list[str]] = Field(default=None, serialization_alias="partIds")
    x: float
    y: float
    r: float

    @model_serializer(mode="wrap")
    def _drop_absent_reference(self, handler) -> dict[str, Any]:
        data = handler(self)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_hotspot(cls, hotspot: Hotspot) -> "HotspotResponse":
        if len(hotspot.part_ids) == 1:
            return cls(part_id=hotspot.part_ids[0], x=hotspot.x, y=hotspot.y, r=hotspot.r)
        return cls(part_ids=list(hotspot.part_ids), x=hotspot.x, y=hotspot.y, r=hotspot.r)


class IllustrationDetail(IllustrationHeader):
    parts: list[PartResponse]
    hotspots: list[HotspotResponse]

    @classmethod
    def from_illustration(cls, ill: Illustration) -> "IllustrationDetail":
        return cls(
            **_header_fields(ill),
            parts=[PartResponse.from_part(p) for p in ill.parts],
            hotspots=[HotspotResponse.from_hotspot(h) for h in ill.hotspots],
        )


class CatalogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    illustrations: list[IllustrationDetail]


class StructurePart(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    price: int = 0
    additional: str = ""

    def to_part(self) -> Part:
        return Part(id=self.id, code=self.code, name=self.name, price=self.price, additional=self.additional)


class StructureHotspot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    x: float
    y: float
    r: float = Field(gt=0)
    part_id: Optional[str] = Field(default=None, alias="partId")
    part_ids: Optional[list[str]] = Field(default=None, alias="partIds")

    def referenced_ids(self) -> list[str]:
        if self.part_ids is not None:
            return [pid for pid in self.part_ids if pid]
        return [self.part_id] if self.part_id else []


class StructureRequest(BaseModel):
    """Request body for PUT /illustrations/iid/{iid}/structure."""

    parts: list[StructurePart]
    hotspots: list[StructureHotspot]


class UploadResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str


def _header_fields(ill: Illustration) -> dict:
    return {
        "iid": ill.iid,
        "id": ill.jenis,
        "name": ill.name,
        "model": ill.model,
        "posisi": ill.posisi,
        "nama_posisi": ill.nama_posisi,
        "no_posisi": ill.no_posisi,
        "image": ill.image,
        "size": Size(width=ill.width, height=ill.height),
    }
