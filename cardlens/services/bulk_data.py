import json
import os
import time
import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from cardlens.core import constants
from cardlens.core.models import CardRecord

DATA_DIR = os.path.join(os.getcwd(), "data")
DB_DIR = os.path.join(DATA_DIR, "db")
BULK_CARDS_FILE = os.path.join(DB_DIR, "bulk_cards.json")

logger = logging.getLogger(__name__)


def is_playable_card(raw: Dict[str, Any]) -> bool:
    if not raw.get("name") or not raw.get("type_line"):
        return False
    if raw.get("set_type") in constants.EXCLUDED_SET_TYPES:
        return False
    if raw.get("layout") in constants.EXCLUDED_LAYOUTS:
        return False
    return True


def parse_card(raw: Dict[str, Any]) -> CardRecord:
    image_uris = raw.get("image_uris") or {}
    # Double faced cards keep their images and text on the faces
    faces = raw.get("card_faces") or []
    if not image_uris and faces:
        image_uris = faces[0].get("image_uris") or {}
    oracle_text = raw.get("oracle_text")
    if oracle_text is None and faces:
        oracle_text = "\n//\n".join(f.get("oracle_text", "") for f in faces)

    return CardRecord(
        id=raw["id"],
        name=raw["name"],
        set_code=raw.get("set", ""),
        set_name=raw.get("set_name", ""),
        collector_number=str(raw.get("collector_number", "")),
        rarity=raw.get("rarity", "common"),
        type_line=raw.get("type_line", ""),
        mana_cost=raw.get("mana_cost") or "",
        cmc=raw.get("cmc") or 0.0,
        colors=frozenset(raw.get("colors") or []),
        price_snapshot=raw.get("prices") or {},
        image_refs={k: v for k, v in image_uris.items() if isinstance(v, str)},
        oracle_text=oracle_text or "",
        lang=raw.get("lang", "en"),
    )


def process_card_data(raw_cards: List[Dict[str, Any]]) -> List[CardRecord]:
    """Filters bulk entries down to scannable cards and converts them."""
    records: List[CardRecord] = []
    skipped = 0
    for raw in raw_cards:
        if not is_playable_card(raw):
            skipped += 1
            continue
        try:
            records.append(parse_card(raw))
        except (KeyError, ValidationError) as e:
            skipped += 1
            logger.warning(f"Skipping malformed card {raw.get('id', '?')}: {e}")
    logger.info(f"Processed {len(records)} cards ({skipped} skipped)")
    return records


class BulkDataService:
    """Downloads the Scryfall bulk card file and keeps a JSON copy on disk."""

    def __init__(self, cache_file: str = BULK_CARDS_FILE, api_url: str = constants.BULK_DATA_API_URL,
                 bulk_type: str = constants.BULK_DATA_TYPE, timeout: float = 60.0):
        self.cache_file = cache_file
        self.api_url = api_url
        self.bulk_type = bulk_type
        self.timeout = timeout
        self.last_updated: Optional[float] = None

    def _find_download_uri(self) -> str:
        response = requests.get(self.api_url, timeout=self.timeout)
        if response.status_code != 200:
            logger.error(f"Bulk data API Error: {response.status_code}")
            raise Exception(f"Bulk data API Error: {response.status_code}")

        for entry in response.json().get("data", []):
            if entry.get("type") == self.bulk_type:
                return entry["download_uri"]
        raise Exception(f"Bulk data type '{self.bulk_type}' not offered by {self.api_url}")

    def fetch_records(self) -> List[CardRecord]:
        """Downloads, filters, caches and returns the full catalog."""
        uri = self._find_download_uri()
        logger.info(f"Downloading bulk card data from {uri}")
        response = requests.get(uri, timeout=self.timeout)
        if response.status_code != 200:
            logger.error(f"Bulk download failed: {response.status_code}")
            raise Exception(f"Bulk download failed: {response.status_code}")

        raw_cards = response.json()
        logger.info(f"Fetched {len(raw_cards)} raw entries")
        records = process_card_data(raw_cards)
        self.save_to_cache(records)
        return records

    def save_to_cache(self, records: List[CardRecord]):
        directory = os.path.dirname(self.cache_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.last_updated = time.time()
        payload = {
            "last_updated": self.last_updated,
            "cards": [r.model_dump(mode="json") for r in records],
        }
        with open(self.cache_file, 'w', encoding='utf-8') as f:
            json.dump(payload, f)
        logger.info(f"Saved {len(records)} cards to {self.cache_file}")

    def load_from_cache(self) -> Optional[List[CardRecord]]:
        if not os.path.exists(self.cache_file):
            return None
        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                payload = json.load(f)
            records = [CardRecord(**c) for c in payload.get("cards", [])]
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Error reading bulk cache {self.cache_file}: {e}")
            return None
        self.last_updated = payload.get("last_updated")
        logger.info(f"Loaded {len(records)} cards from cache")
        return records

    def should_update(self, max_age_hours: float = constants.BULK_DATA_MAX_AGE_HOURS) -> bool:
        if self.last_updated is None:
            return True
        return (time.time() - self.last_updated) > max_age_hours * 3600

    def load_records(self, force_refresh: bool = False,
                     max_age_hours: float = constants.BULK_DATA_MAX_AGE_HOURS) -> List[CardRecord]:
        """
        Cache first, network when the cache is missing, stale or a refresh is
        forced. A failed download falls back to whatever the cache holds.
        """
        cached = None if force_refresh else self.load_from_cache()
        if cached and not self.should_update(max_age_hours):
            return cached

        try:
            return self.fetch_records()
        except Exception as e:
            if cached:
                logger.warning(f"Bulk data refresh failed, using stale cache: {e}")
                return cached
            raise

    def clear_cache(self):
        if os.path.exists(self.cache_file):
            os.remove(self.cache_file)
            logger.info(f"Removed {self.cache_file}")
        self.last_updated = None

    def get_stats(self) -> Dict[str, Any]:
        exists = os.path.exists(self.cache_file)
        return {
            "cache_file": self.cache_file,
            "cached": exists,
            "size_bytes": os.path.getsize(self.cache_file) if exists else 0,
            "last_updated": self.last_updated,
            "needs_update": self.should_update(),
        }
