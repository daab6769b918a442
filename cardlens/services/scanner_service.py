import logging
from typing import Any, Dict, Iterable, Optional, Union

import cv2
import numpy as np

from cardlens.core.config_manager import DEFAULT_CONFIG, load_config
from cardlens.core.models import CardRecord
from cardlens.services.bulk_data import BulkDataService
from cardlens.services.catalog_index import CardCatalog, CatalogIndex
from cardlens.services.remote_vision import (
    AnthropicVisionClient, RemoteVisionCapability, VisionProxyClient
)
from cardlens.services.scanner import OCR_AVAILABLE
from cardlens.services.scanner.arbitrator import (
    RecognitionArbitrator, RemoteCallGate, RemoteResultCache
)
from cardlens.services.scanner.enhancement import ImageEnhancer
from cardlens.services.scanner.models import CardType, NoMatch, RecognitionResult
from cardlens.services.scanner.ocr import EasyOCREngine, LocalOCRCapability, TextRecognizer
from cardlens.services.scanner.profiles import resolve_card_type

logger = logging.getLogger(__name__)


def build_remote_client(config: Dict[str, Any]) -> Optional[RemoteVisionCapability]:
    if not config.get("remote_vision_enabled"):
        return None
    provider = config.get("remote_provider", "proxy")
    if provider == "anthropic":
        return AnthropicVisionClient(model=config["anthropic_model"], timeout=config["remote_timeout_s"])
    if provider == "proxy":
        return VisionProxyClient(config["remote_vision_url"], config["remote_health_url"],
                                 timeout=config["remote_timeout_s"])
    raise ValueError(f"Unknown remote_provider '{provider}'")


class CardRecognitionService:
    """
    Entry point for card recognition: owns the catalog, the OCR stack and
    the arbitrator, and exposes scan / refresh_catalog / lookup.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 catalog: Optional[CardCatalog] = None,
                 ocr_engine: Optional[LocalOCRCapability] = None,
                 remote: Optional[RemoteVisionCapability] = None,
                 bulk_data: Optional[BulkDataService] = None):
        self.config = {**DEFAULT_CONFIG, **config} if config is not None else load_config()
        self.catalog = catalog or CardCatalog()
        self.bulk_data = bulk_data or BulkDataService()

        if ocr_engine is None:
            if not OCR_AVAILABLE:
                logger.warning("Scanner running without EasyOCR; local scans will report errors.")
            ocr_engine = EasyOCREngine(gpu=self.config.get("ocr_gpu"))
        if remote is None:
            remote = build_remote_client(self.config)

        self.recognizer = TextRecognizer(
            ocr_engine, ImageEnhancer(),
            early_exit_confidence=self.config["ocr_early_exit_confidence"],
        )
        self.arbitrator = RecognitionArbitrator(
            self.catalog,
            self.recognizer,
            remote=remote,
            gate=RemoteCallGate(self.config["remote_cooldown_ms"]),
            cache=RemoteResultCache(self.config["remote_cache_ttl_ms"]),
            remote_timeout_s=self.config["remote_timeout_s"],
            local_timeout_s=self.config["local_timeout_s"],
            remote_accept_confidence=self.config["remote_accept_confidence"],
            local_accept_confidence=self.config["local_accept_confidence"],
            fuzzy_min_similarity=self.config["fuzzy_min_similarity"],
            fuzzy_max_results=self.config["fuzzy_max_results"],
            default_card_type=resolve_card_type(self.config["default_card_type"]),
        )

    def scan(self, frame: np.ndarray, card_type_hint: Union[str, CardType, None] = None) -> Union[RecognitionResult, NoMatch]:
        return self.arbitrator.scan(frame, card_type_hint)

    def scan_bytes(self, image_bytes: bytes, card_type_hint: Union[str, CardType, None] = None) -> Union[RecognitionResult, NoMatch]:
        frame = cv2.imdecode(np.frombuffer(image_bytes, np.uint8), cv2.IMREAD_COLOR)
        if frame is None:
            raise ValueError("Could not decode image bytes")
        return self.scan(frame, card_type_hint)

    def refresh_catalog(self, records: Iterable[CardRecord]) -> CatalogIndex:
        return self.catalog.refresh(records)

    def load_catalog(self, force_refresh: bool = False) -> CatalogIndex:
        """Loads the bulk catalog (disk cache or download) and swaps it in."""
        records = self.bulk_data.load_records(
            force_refresh=force_refresh,
            max_age_hours=self.config["bulk_data_max_age_h"],
        )
        return self.refresh_catalog(records)

    def lookup(self, name_or_id: str) -> Optional[CardRecord]:
        return self.catalog.lookup(name_or_id)

    def check_remote_health(self) -> bool:
        return self.arbitrator.check_remote_health()

    def shutdown(self):
        self.arbitrator.shutdown()
