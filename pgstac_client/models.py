# ============================================================================
# CLAUDE CONTEXT - PGSTAC MODELS
# ============================================================================
# STATUS: Core - Pydantic models for STAC values and pgstac search payloads
# PURPOSE: Typed values exchanged with the pgstac schema functions
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: Link, Provider, Asset, Extent, Collection, Item, SortBy, Fields,
#          SearchQuery, Context, Page, ItemOutcome, BatchSummary
# INTERFACES: Pydantic BaseModel, dataclasses
# PYDANTIC_MODELS: All STAC and search classes in this file
# DEPENDENCIES: pydantic, typing, dataclasses, urllib
# SOURCE: STAC 1.0.0 specification, pgstac search() body and FeatureCollection output
# SCOPE: Wire models only - no business validation (the store validates geometry, filters)
# VALIDATION: Pydantic v2 validation at decode time
# PATTERNS: Data Transfer Objects (DTOs)
# ENTRY_POINTS: from pgstac_client.models import Collection, Item, SearchQuery
# ============================================================================

"""
pgstac Pydantic Models

Collections and items mirror the STAC 1.0.0 JSON documents that pgstac stores
in its ``content`` columns. Unknown fields are preserved (extra="allow") so a
document written and read back compares equal.

SearchQuery is the body passed to ``pgstac.search(jsonb)``; Page is the
FeatureCollection it returns.

References:
- STAC Spec 1.0.0: https://github.com/radiantearth/stac-spec
- STAC API Item Search: https://api.stacspec.org/v1.0.0/item-search
- pgstac: https://github.com/stac-utils/pgstac
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, FrozenSet, List, Literal, Optional, Union
from urllib.parse import parse_qs, urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_serializer,
)

from .exceptions import DecodeError

STAC_VERSION = "1.0.0"
DEFAULT_LICENSE = "proprietary"


class StacModel(BaseModel):
    """
    Base for STAC documents.

    Serialises without None-valued fields (STAC schemas reject explicit nulls
    for optional fields) except the ones listed in ``nullable_fields``.
    Free-form mappings (properties, geometry, summaries) are left untouched.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    nullable_fields: ClassVar[FrozenSet[str]] = frozenset()

    @model_serializer(mode="wrap")
    def _drop_none(self, handler):
        data = handler(self)
        return {
            key: value for key, value in data.items()
            if value is not None or key in self.nullable_fields
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible dict, exactly what is sent to pgstac."""
        return self.model_dump(mode="json", by_alias=True)


class Link(StacModel):
    """STAC Link object."""
    href: str
    rel: str
    type: Optional[str] = None
    title: Optional[str] = None


class Provider(StacModel):
    """Organization that captured, processed or hosts the data."""
    name: str
    description: Optional[str] = None
    roles: Optional[List[str]] = None
    url: Optional[str] = None


class Asset(StacModel):
    """STAC Asset object."""
    href: str
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    roles: Optional[List[str]] = None


class SpatialExtent(StacModel):
    """Spatial extent of a collection (bounding boxes)."""
    bbox: List[List[float]] = Field(
        default_factory=lambda: [[-180.0, -90.0, 180.0, 90.0]],
        description="Bounding boxes (minx, miny, maxx, maxy)"
    )


class TemporalExtent(StacModel):
    """Temporal extent of a collection."""
    interval: List[List[Optional[str]]] = Field(
        default_factory=lambda: [[None, None]],
        description="Temporal intervals (start, end), open ends as null"
    )


class Extent(StacModel):
    """Spatial and temporal extent of a collection."""
    spatial: SpatialExtent = Field(default_factory=SpatialExtent)
    temporal: TemporalExtent = Field(default_factory=TemporalExtent)


class Collection(StacModel):
    """
    STAC Collection as stored in pgstac.collections.

    Identity is ``id``, unique within the store.
    """
    type: Literal["Collection"] = "Collection"
    stac_version: str = STAC_VERSION
    stac_extensions: List[str] = Field(default_factory=list)
    id: str
    title: Optional[str] = None
    description: str
    keywords: Optional[List[str]] = None
    license: str = DEFAULT_LICENSE
    providers: Optional[List[Provider]] = None
    extent: Extent = Field(default_factory=Extent)
    summaries: Optional[Dict[str, Any]] = None
    links: List[Link] = Field(default_factory=list)
    assets: Optional[Dict[str, Asset]] = None

    @classmethod
    def new(cls, id: str, description: str) -> "Collection":
        """Minimal valid collection with a global extent."""
        return cls(id=id, description=description)


class Item(StacModel):
    """
    STAC Item (GeoJSON Feature) as stored in pgstac.items.

    ``collection`` must name an existing collection when written; pgstac
    enforces it, the model does not.
    """
    nullable_fields: ClassVar[FrozenSet[str]] = frozenset({"geometry"})

    type: Literal["Feature"] = "Feature"
    stac_version: str = STAC_VERSION
    stac_extensions: List[str] = Field(default_factory=list)
    id: str
    geometry: Optional[Dict[str, Any]] = None
    bbox: Optional[List[float]] = None
    properties: Dict[str, Any] = Field(default_factory=lambda: {"datetime": None})
    links: List[Link] = Field(default_factory=list)
    assets: Dict[str, Asset] = Field(default_factory=dict)
    collection: Optional[str] = None

    @classmethod
    def new(
        cls,
        id: str,
        collection: Optional[str] = None,
        geometry: Optional[Dict[str, Any]] = None,
    ) -> "Item":
        """Item stamped with the current UTC time as its datetime."""
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        return cls(
            id=id,
            collection=collection,
            geometry=geometry,
            properties={"datetime": now},
        )


# ============================================================================
# SEARCH
# ============================================================================

class SortBy(BaseModel):
    """One sort key of a search."""
    model_config = ConfigDict(frozen=True)

    field: str
    direction: Literal["asc", "desc"] = "asc"


class Fields(BaseModel):
    """Fields to include or exclude from returned features."""
    model_config = ConfigDict(frozen=True)

    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)


class SearchQuery(BaseModel):
    """
    Item search, serialised as the jsonb argument of pgstac.search().

    Immutable: build a new query (or use ``with_token``) for the next page.
    Only shape is validated here; filter semantics and geometry validity are
    checked by pgstac.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    limit: Optional[int] = Field(default=None, ge=1, description="Page size")
    bbox: Optional[List[float]] = Field(
        default=None,
        description="Bounding box (minx, miny, maxx, maxy) or 3D (6 numbers)"
    )
    datetime: Optional[str] = Field(
        default=None,
        description="RFC 3339 instant or interval ('start/end', '..' for open ends)"
    )
    intersects: Optional[Dict[str, Any]] = Field(
        default=None,
        description="GeoJSON geometry the items must intersect"
    )
    ids: List[str] = Field(default_factory=list)
    collections: List[str] = Field(default_factory=list)
    filter: Optional[Union[Dict[str, Any], str]] = Field(
        default=None,
        description="CQL2 filter (JSON object or text)"
    )
    filter_lang: Optional[str] = Field(default=None, alias="filter-lang")
    query: Optional[Dict[str, Any]] = Field(
        default=None,
        description="STAC API query extension property filters"
    )
    sortby: List[SortBy] = Field(default_factory=list)
    fields: Optional[Fields] = None
    token: Optional[str] = Field(
        default=None,
        description="Continuation token ('next:<id>' or 'prev:<id>')"
    )
    conf: Optional[Dict[str, Any]] = Field(
        default=None,
        description="pgstac per-search settings (e.g. {'context': 'on'})"
    )

    @field_validator("bbox")
    @classmethod
    def validate_bbox(cls, v):
        """A bbox is 4 (2D) or 6 (3D) numbers."""
        if v is not None and len(v) not in (4, 6):
            raise ValueError(f"bbox must have 4 or 6 numbers, got {len(v)}")
        return v

    def to_search_body(self) -> Dict[str, Any]:
        """Body for pgstac.search(), omitting unset and empty values."""
        body = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if "fields" in body:
            body["fields"] = {k: v for k, v in body["fields"].items() if v}
        return {k: v for k, v in body.items() if v not in ([], {})}

    def with_token(self, token: Optional[str]) -> "SearchQuery":
        """Copy of this query positioned at ``token``."""
        return self.model_copy(update={"token": token})


class Context(BaseModel):
    """Search context (counts), present when pgstac's context setting is on."""
    model_config = ConfigDict(extra="allow")

    limit: Optional[int] = None
    matched: Optional[int] = None
    returned: int = 0


class Page(BaseModel):
    """
    One page of search results.

    ``features`` stay raw mappings because a ``fields`` include/exclude can
    strip them below a valid Item; use ``items()`` for typed values.
    """
    model_config = ConfigDict(extra="allow")

    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: List[Dict[str, Any]] = Field(default_factory=list)
    next: Optional[str] = None
    prev: Optional[str] = None
    context: Optional[Context] = None
    links: List[Dict[str, Any]] = Field(default_factory=list)

    def next_token(self) -> Optional[str]:
        """Token for the following page, or None on the last page."""
        return self._token("next", self.next)

    def prev_token(self) -> Optional[str]:
        """Token for the preceding page, or None on the first page."""
        return self._token("prev", self.prev)

    def has_next(self) -> bool:
        return self.next_token() is not None

    def items(self) -> List[Item]:
        """Decode every feature into an Item."""
        try:
            return [Item.model_validate(feature) for feature in self.features]
        except ValidationError as e:
            raise DecodeError(
                f"search page contains a feature that is not a STAC item: {e}",
                operation="search",
                cause=e,
            ) from e

    def _token(self, direction: str, value: Optional[str]) -> Optional[str]:
        # pgstac < 0.8 returns bare ids in next/prev
        if value:
            prefix = f"{direction}:"
            return value if value.startswith(prefix) else f"{prefix}{value}"

        # pgstac >= 0.8 returns paging links instead
        for link in self.links:
            if link.get("rel") != direction:
                continue
            body = link.get("body")
            if isinstance(body, dict) and body.get("token"):
                return body["token"]
            href = link.get("href")
            if href:
                tokens = parse_qs(urlparse(href).query).get("token")
                if tokens:
                    return tokens[0]
        return None


# ============================================================================
# BULK WRITE OUTCOMES
# ============================================================================

@dataclass
class ItemOutcome:
    """Outcome of one item in a bulk write."""
    index: int
    item_id: Optional[str]
    collection: Optional[str]
    succeeded: bool
    error: Optional[str] = None


@dataclass
class BatchSummary:
    """Per-item outcomes of create_items / upsert_items, in input order."""
    outcomes: List[ItemOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def __len__(self) -> int:
        return len(self.outcomes)
