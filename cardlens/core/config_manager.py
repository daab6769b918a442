import json
import os
import logging
from typing import Dict, Any, Optional

from cardlens.core import constants

logger = logging.getLogger(__name__)

CONFIG_PATH = "data/scanner_config.json"

DEFAULT_CONFIG = {
    "remote_vision_enabled": True,
    "remote_provider": "proxy",  # proxy or anthropic
    "remote_vision_url": "http://localhost:3001/api/claude-vision",
    "remote_health_url": "http://localhost:3001/health",
    "anthropic_model": "claude-3-5-sonnet-20241022",
    "remote_timeout_s": constants.REMOTE_TIMEOUT_S,
    "local_timeout_s": constants.LOCAL_TIMEOUT_S,
    "remote_cooldown_ms": constants.REMOTE_COOLDOWN_MS,
    "remote_cache_ttl_ms": constants.REMOTE_CACHE_TTL_MS,
    "remote_accept_confidence": constants.REMOTE_ACCEPT_CONFIDENCE,
    "local_accept_confidence": constants.LOCAL_ACCEPT_CONFIDENCE,
    "fuzzy_min_similarity": constants.LOCAL_FUZZY_MIN_SIMILARITY,
    "fuzzy_max_results": constants.FUZZY_MAX_RESULTS,
    "ocr_early_exit_confidence": constants.OCR_EARLY_EXIT_CONFIDENCE,
    "default_card_type": "standard",
    "ocr_gpu": None,  # None = use CUDA when torch sees it
    "bulk_data_max_age_h": constants.BULK_DATA_MAX_AGE_HOURS,
}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        return DEFAULT_CONFIG.copy()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f)
            # Merge with defaults to ensure all keys exist
            merged = DEFAULT_CONFIG.copy()
            merged.update(config)
            return merged
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        return DEFAULT_CONFIG.copy()


def save_config(config: Dict[str, Any], path: Optional[str] = None):
    path = path or CONFIG_PATH
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
    except Exception as e:
        logger.error(f"Failed to save config: {e}")
