# core/classifier.py
from typing import Iterable, List, Optional

from .models import CatalogItem, Snapshot, now_utc_iso

FREE_SUFFIX = ":free"


def is_free(item: CatalogItem) -> bool:
    """
    A catalog entry is free when its id carries the ``:free`` suffix, or when
    it has pricing and both prompt and completion cost are zero.
    Missing or malformed prices count as zero.
    """
    if item.id.endswith(FREE_SUFFIX):
        return True

    if item.pricing is not None:
        prompt = item.pricing.prompt or 0.0
        completion = item.pricing.completion or 0.0
        if prompt == 0 and completion == 0:
            return True

    return False


def free_items(items: Iterable[CatalogItem]) -> List[CatalogItem]:
    return [it for it in items if is_free(it)]


def build_snapshot(items: Iterable[CatalogItem], timestamp: Optional[str] = None) -> Snapshot:
    all_items = tuple(items)
    return Snapshot(
        timestamp=timestamp or now_utc_iso(),
        total_items=len(all_items),
        free_items=tuple(free_items(all_items)),
        all_items=all_items,
    )
