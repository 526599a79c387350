"""Priority-ordered crawl frontier with a processed cursor."""

from __future__ import annotations

from sitescan.engines.base import DiscoveredURL


class CrawlFrontier:
    """
    Append-only list of DiscoveredURLs split by a cursor into processed and
    pending parts. Only the pending tail is ever re-sorted, so work already
    popped is never reconsidered. Sorting is stable, which keeps discovery
    order inside a priority tier.
    """

    def __init__(self) -> None:
        self._items: list[DiscoveredURL] = []
        self._cursor = 0
        self._discovered: set[str] = set()

    def push(self, item: DiscoveredURL) -> None:
        """Enqueue unconditionally (seeding). Repeats surface as duplicate pops."""
        self._items.append(item)
        self._discovered.add(item.url)

    def discover(self, item: DiscoveredURL) -> bool:
        """Enqueue a URL only the first time it is seen."""
        if item.url in self._discovered:
            return False
        self.push(item)
        return True

    def resort(self) -> None:
        tail = self._items[self._cursor:]
        tail.sort(key=lambda item: item.priority, reverse=True)
        self._items[self._cursor:] = tail

    def pop(self) -> DiscoveredURL:
        if self._cursor >= len(self._items):
            raise IndexError("pop from an empty frontier")
        item = self._items[self._cursor]
        self._cursor += 1
        return item

    def peek(self) -> DiscoveredURL | None:
        return self._items[self._cursor] if self._cursor < len(self._items) else None

    def is_discovered(self, url: str) -> bool:
        return url in self._discovered

    @property
    def discovered_count(self) -> int:
        return len(self._discovered)

    @property
    def processed_count(self) -> int:
        return self._cursor

    def __len__(self) -> int:
        return len(self._items) - self._cursor

    def __bool__(self) -> bool:
        return len(self) > 0
