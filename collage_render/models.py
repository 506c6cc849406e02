"""
Record types shared by the render pipeline.

Orders and members are read from the order store; render jobs, variant
statuses and variant outputs are the records this service owns. All of them
are pydantic models so they round-trip through ``model_dump()`` into the
document store. Variants are plain frozen dataclasses: they are recomputed
from the order on demand and never persisted.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GridKind(str, Enum):
    SQUARE = "square"
    HEXAGONAL = "hexagonal"

    @property
    def prefix(self) -> str:
        """Variant id prefix for this grid kind."""
        return f"{self.value}-"


GRID_KIND_ALIASES = {
    "square": GridKind.SQUARE,
    "hexagonal": GridKind.HEXAGONAL,
    "hexagon": GridKind.HEXAGONAL,
}


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VariantState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Member(BaseModel):
    """A group member as stored on the order."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: Optional[str] = None
    name: str = ""
    photo: Optional[str] = None
    roll_number: Optional[str] = Field(default=None, alias='memberRollNumber')
    size: Optional[str] = None
    vote: Optional[str] = None

    @field_validator('id', 'roll_number', 'size', 'vote', mode='before')
    @classmethod
    def _stringify(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def has_photo(self) -> bool:
        return bool(self.photo and self.photo.strip())

    @property
    def key(self) -> str:
        """Key used for the fetched-image map."""
        return self.id or self.roll_number or self.name


class CachedOutput(BaseModel):
    """Denormalized variant image reference kept on the order."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    variant_id: str = Field(alias='variantId')
    image_url: str = Field(alias='imageUrl')
    center_member_name: Optional[str] = Field(default=None, alias='centerMemberName')
    grid_kind: GridKind = Field(default=GridKind.SQUARE, alias='gridType')


class Order(BaseModel):
    """The slice of an order record the renderer consumes."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: str = Field(alias='_id')
    client_order_id: Optional[str] = Field(default=None, alias='clientOrderId')
    grid_kind: Optional[str] = Field(default=None, alias='gridTemplate')
    members: List[Member] = Field(default_factory=list)
    cached_outputs: List[CachedOutput] = Field(default_factory=list, alias='centerVariantImages')

    @field_validator('id', 'client_order_id', mode='before')
    @classmethod
    def _stringify(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator('members', mode='before')
    @classmethod
    def _drop_empty_members(cls, value):
        if value is None:
            return []
        return [m for m in value if m]

    @model_validator(mode='after')
    def _assign_member_ids(self):
        # Members without an upstream id get a stable positional one so the
        # fetched-image map and variant ids stay deterministic.
        used = {m.id for m in self.members if m.id}
        for index, member in enumerate(self.members):
            if member.id:
                continue
            candidate = member.roll_number
            if not candidate or candidate in used:
                candidate = f"member-{index}"
            suffix = 1
            while candidate in used:
                candidate = f"member-{index}-{suffix}"
                suffix += 1
            member.id = candidate
            used.add(candidate)
        return self

    @property
    def effective_id(self) -> str:
        return self.client_order_id or self.id

    @property
    def resolved_grid_kind(self) -> Optional[GridKind]:
        if not self.grid_kind:
            return None
        return GRID_KIND_ALIASES.get(self.grid_kind.strip().lower())

    def photographed_members(self) -> List[Member]:
        return [m for m in self.members if m.has_photo]


class VariantStatus(BaseModel):
    """Progress of one variant inside a render job."""

    variant_id: str
    center_member_id: Optional[str] = None
    center_member_name: Optional[str] = None
    grid_kind: GridKind = GridKind.SQUARE
    status: VariantState = VariantState.PENDING
    image_url: Optional[str] = None
    error: Optional[str] = None


class RenderJob(BaseModel):
    """Persisted render state for one order."""

    order_id: str
    status: JobStatus = JobStatus.QUEUED
    total_variants: int = 0
    completed_variants: int = 0
    variants: List[VariantStatus] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def failed_variants(self) -> int:
        return sum(1 for v in self.variants if v.status == VariantState.FAILED)


class VariantOutput(BaseModel):
    """Final rendered image for one (order, variant) pair."""

    order_id: str
    variant_id: str
    grid_kind: GridKind = GridKind.SQUARE
    center_member_id: Optional[str] = None
    center_member_name: Optional[str] = None
    image_url: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    size_bytes: Optional[int] = None
    format: str = "jpeg"
    status: VariantState = VariantState.COMPLETED
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


@dataclass(frozen=True)
class Variant:
    """One candidate rendering of an order's collage."""
    id: str
    center_member: Member
    members: Tuple[Member, ...]
    center_index: int
    grid_kind: GridKind

    def member_at(self, index: int) -> Optional[Member]:
        if 0 <= index < len(self.members):
            return self.members[index]
        return None
