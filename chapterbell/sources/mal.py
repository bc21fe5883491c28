"""MyAnimeList source: chapter count of a manga by MAL id."""
from __future__ import annotations

import logging
import os

import requests

from chapterbell.config import resolve_env

logger = logging.getLogger(__name__)

MAL_API = "https://api.myanimelist.net/v2"


class MalSource:
    """Counter source reading ``num_chapters`` from the MAL v2 API.

    MAL reports 0 chapters for ongoing series, which is treated as unavailable.
    """

    id = "mal"

    def __init__(self, source_config: dict | None = None) -> None:
        cfg = source_config or {}
        self.endpoint = str(cfg.get("endpoint") or MAL_API).rstrip("/")
        self.client_id = resolve_env(str(cfg.get("client_id") or os.environ.get("MAL_CLIENT_ID", ""))).strip()
        self.timeout = float(cfg.get("timeout") or 10)
        if not self.client_id:
            logger.warning("MAL_CLIENT_ID not configured; MAL lookups will fail")

    def fetch_latest_counter(self, series_key: str) -> int | None:
        if not series_key.strip().isdigit():
            logger.error("MAL series key must be a numeric id, got %r", series_key)
            return None
        try:
            resp = requests.get(
                f"{self.endpoint}/manga/{series_key.strip()}",
                params={"fields": "num_chapters"},
                headers={"X-MAL-CLIENT-ID": self.client_id},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Error fetching MAL manga %s: %s", series_key, e)
            return None
        if resp.status_code != 200:
            logger.error("MAL request for %s failed: status=%s", series_key, resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError as e:
            logger.error("MAL returned invalid JSON for %s: %s", series_key, e)
            return None
        chapters = data.get("num_chapters") if isinstance(data, dict) else None
        if not isinstance(chapters, int) or chapters <= 0:
            return None
        return chapters
