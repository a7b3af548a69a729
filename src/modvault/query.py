"""Public-facing catalog views."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from modvault.schemas import ItemRecord, PublicItemView

TView = TypeVar("TView", ItemRecord, PublicItemView)


def to_public_view(item: ItemRecord) -> PublicItemView:
    return PublicItemView(
        id=item.id,
        title=item.title,
        description=item.description,
        category=item.category,
        storage_name=item.storage_name,
        size_bytes=item.size_bytes,
    )


def list_public(items: Iterable[ItemRecord]) -> list[PublicItemView]:
    return [to_public_view(item) for item in items if item.is_public]


def filter_items(
    items: Iterable[TView],
    *,
    category: str | None = None,
    search: str | None = None,
) -> list[TView]:
    """Narrow a catalog listing by category and case-insensitive title/description text."""
    needle = (search or "").strip().lower()
    results: list[TView] = []
    for item in items:
        if category is not None and item.category != category:
            continue
        if needle and needle not in item.title.lower() and needle not in item.description.lower():
            continue
        results.append(item)
    return results
