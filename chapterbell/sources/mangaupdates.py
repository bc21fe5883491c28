"""MangaUpdates source: latest released chapter of a series, looked up by title."""
from __future__ import annotations

import logging
import re
from typing import Any

import requests

logger = logging.getLogger(__name__)

MANGAUPDATES_API = "https://api.mangaupdates.com/v1"
# Ranges like "10-11" or "10–11" (en dash) count as their last chapter
RANGE_SPLIT_RE = re.compile("[-–]")
LEADING_NUMBER_RE = re.compile(r"\s*(\d+(?:\.\d+)?)")


def parse_chapter(raw: Any) -> float | None:
    """Parse a release's chapter string; None when it carries no number."""
    if raw is None:
        return None
    last = RANGE_SPLIT_RE.split(str(raw))[-1]
    m = LEADING_NUMBER_RE.match(last)
    if not m:
        return None
    return float(m.group(1))


def latest_chapter(results: list[Any], title: str) -> int | None:
    """Highest chapter among releases whose title matches exactly (case-insensitive)."""
    wanted = title.strip().lower()
    best = 0.0
    for item in results:
        record = item.get("record") if isinstance(item, dict) else None
        if not isinstance(record, dict):
            continue
        if str(record.get("title") or "").strip().lower() != wanted:
            continue
        num = parse_chapter(record.get("chapter"))
        if num is not None and num > best:
            best = num
    # 0 means nothing usable was found
    return int(best) if best >= 1 else None


class MangaUpdatesSource:
    """Counter source backed by the MangaUpdates releases search.

    The series key is the series title; the releases endpoint's series id
    filter is unreliable so the search goes by title and filters exact matches.
    """

    id = "mangaupdates"

    def __init__(self, source_config: dict | None = None) -> None:
        cfg = source_config or {}
        self.endpoint = str(cfg.get("endpoint") or MANGAUPDATES_API).rstrip("/")
        self.per_page = int(cfg.get("per_page") or 100)
        self.timeout = float(cfg.get("timeout") or 10)

    def fetch_latest_counter(self, series_key: str) -> int | None:
        try:
            resp = requests.post(
                f"{self.endpoint}/releases/search",
                json={"search": series_key, "per_page": self.per_page},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Error getting latest chapter for %s: %s", series_key, e)
            return None
        if resp.status_code != 200:
            logger.error(
                "MangaUpdates search failed for %s: status=%s body=%s",
                series_key,
                resp.status_code,
                resp.text[:200].replace("\n", " "),
            )
            return None
        try:
            data = resp.json()
        except ValueError as e:
            logger.error("MangaUpdates returned invalid JSON for %s: %s", series_key, e)
            return None
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            logger.error("MangaUpdates response for %s has no results list", series_key)
            return None
        return latest_chapter(results, series_key)
