# Counter source registry
from __future__ import annotations

from chapterbell.sources.mal import MalSource
from chapterbell.sources.mangaupdates import MangaUpdatesSource

SOURCES: dict[str, type] = {
    "mangaupdates": MangaUpdatesSource,
    "mal": MalSource,
}


def get_source(source_type: str):
    """Return source class for source_type; raises KeyError if unknown."""
    if source_type not in SOURCES:
        raise KeyError(f"Unknown source type: {source_type}")
    return SOURCES[source_type]
