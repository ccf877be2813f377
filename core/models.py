# core/models.py
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pytz

# Fields of an API entry that CatalogItem models explicitly; everything else
# is carried in ``metadata`` untouched.
_ITEM_FIELDS = ("id", "name", "description", "pricing", "context_length", "created")


def now_utc_iso() -> str:
    return datetime.now(tz=pytz.UTC).isoformat()


def parse_price(value: Any) -> Optional[float]:
    """Parse a pricing field; anything that is not a finite number is None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    # int(inf) raises OverflowError, int(nan) ValueError
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class Pricing:
    """
    Per-token pricing of a catalog entry.
    ``prompt``/``completion`` are None when missing or malformed; ``raw``
    keeps the fields exactly as the API sent them.
    """
    prompt: Optional[float] = None
    completion: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Pricing":
        return cls(
            prompt=parse_price(raw.get("prompt")),
            completion=parse_price(raw.get("completion")),
            raw=dict(raw),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.raw)
        if "prompt" not in out and self.prompt is not None:
            out["prompt"] = self.prompt
        if "completion" not in out and self.completion is not None:
            out["completion"] = self.completion
        return out


@dataclass(frozen=True)
class CatalogItem:
    """
    One model listing from the catalog API.
    ``metadata`` holds provider/architecture/etc. fields verbatim.
    """
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    pricing: Optional[Pricing] = None
    context_length: Optional[int] = None
    created: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CatalogItem":
        pricing_raw = raw.get("pricing")
        name = raw.get("name")
        description = raw.get("description")
        return cls(
            id=str(raw["id"]),
            name=name if isinstance(name, str) and name else None,
            description=description if isinstance(description, str) else None,
            pricing=Pricing.from_dict(pricing_raw) if isinstance(pricing_raw, dict) else None,
            context_length=_optional_int(raw.get("context_length")),
            created=_optional_int(raw.get("created")),
            metadata={k: v for k, v in raw.items() if k not in _ITEM_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id}
        if self.name is not None:
            out["name"] = self.name
        if self.description is not None:
            out["description"] = self.description
        if self.pricing is not None:
            out["pricing"] = self.pricing.to_dict()
        if self.context_length is not None:
            out["context_length"] = self.context_length
        if self.created is not None:
            out["created"] = self.created
        out.update(self.metadata)
        return out


@dataclass(frozen=True)
class Snapshot:
    """
    Point-in-time capture of the whole catalog and its free subset.
    Build through core.classifier.build_snapshot so free_items stays consistent.
    """
    timestamp: str
    total_items: int
    free_items: Tuple[CatalogItem, ...]
    all_items: Tuple[CatalogItem, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "totalModels": self.total_items,
            "freeModels": [it.to_dict() for it in self.free_items],
            "allModels": [it.to_dict() for it in self.all_items],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Snapshot":
        # Without a free list there is no baseline to diff against.
        if not isinstance(raw.get("freeModels"), list):
            raise KeyError("freeModels")
        all_items = tuple(CatalogItem.from_dict(it) for it in raw.get("allModels") or [])
        free_items = tuple(CatalogItem.from_dict(it) for it in raw["freeModels"])
        return cls(
            timestamp=str(raw["timestamp"]),
            total_items=int(raw.get("totalModels", len(all_items))),
            free_items=free_items,
            all_items=all_items,
        )


@dataclass
class ChangeSet:
    added: List[CatalogItem] = field(default_factory=list)
    removed: List[CatalogItem] = field(default_factory=list)

    @property
    def added_ids(self) -> List[str]:
        return [it.id for it in self.added]

    @property
    def removed_ids(self) -> List[str]:
        return [it.id for it in self.removed]

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed)


@dataclass
class ThrottleState:
    last_trigger: Optional[datetime] = None
    last_update: Optional[datetime] = None

    @property
    def last_run(self) -> Optional[datetime]:
        stamps = [ts for ts in (self.last_trigger, self.last_update) if ts is not None]
        return max(stamps) if stamps else None


@dataclass
class RunResult:
    success: bool
    timestamp: str
    total_items: int = 0
    free_items: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "total_items": self.total_items,
                "free_items": self.free_items,
                "timestamp": self.timestamp,
            }
        return {"success": False, "error": self.error, "timestamp": self.timestamp}
