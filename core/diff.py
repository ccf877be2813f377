# core/diff.py
from typing import Iterable, List, Sequence

from .models import CatalogItem, ChangeSet


def _missing_from(items: Iterable[CatalogItem], other_ids: set) -> List[CatalogItem]:
    out: List[CatalogItem] = []
    seen: set = set()
    for it in items:
        if it.id in other_ids or it.id in seen:
            continue
        seen.add(it.id)
        out.append(it)
    return out


def diff_free_items(
    previous_free: Sequence[CatalogItem], current_free: Sequence[CatalogItem]
) -> ChangeSet:
    """
    Compute which free items appeared and disappeared between two runs.
    - Items are matched by id only; field changes on kept items are ignored.
    - added keeps the order of current_free, removed the order of previous_free.
    """
    old_ids = {it.id for it in previous_free}
    new_ids = {it.id for it in current_free}

    return ChangeSet(
        added=_missing_from(current_free, old_ids),
        removed=_missing_from(previous_free, new_ids),
    )
