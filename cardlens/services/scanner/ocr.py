import logging
import threading
from typing import Dict, Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from cardlens.core import constants
from cardlens.services.scanner.enhancement import ImageEnhancer
from cardlens.services.scanner.models import (
    CardType, OCRReading, TextReading, ZoneReading
)
from cardlens.services.scanner.profiles import PROFILES, strategies_for

logger = logging.getLogger(__name__)


class LocalOCRCapability(Protocol):
    def recognize(self, image_bytes: bytes, character_whitelist: str,
                  single_line_mode: bool) -> OCRReading:
        ...


class EasyOCREngine:
    """LocalOCRCapability backed by an EasyOCR reader, created on first use."""

    def __init__(self, languages: Sequence[str] = ("en",), gpu: Optional[bool] = None):
        self.languages = list(languages)
        self.gpu = gpu
        self._reader = None
        self._lock = threading.Lock()

    def get_reader(self):
        if self._reader is None:
            import easyocr
            use_gpu = self.gpu
            if use_gpu is None:
                import torch
                use_gpu = hasattr(torch, 'cuda') and torch.cuda.is_available()
            logger.info(f"Initializing EasyOCR Reader (gpu={use_gpu})...")
            self._reader = easyocr.Reader(self.languages, gpu=use_gpu)
        return self._reader

    def recognize(self, image_bytes: bytes, character_whitelist: str = "",
                  single_line_mode: bool = True) -> OCRReading:
        image = cv2.imdecode(np.frombuffer(image_bytes, np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            raise ValueError("Could not decode image bytes for OCR")

        # One readtext at a time; a timed-out scan may still hold the reader
        with self._lock:
            reader = self.get_reader()
            results = reader.readtext(
                image, detail=1, paragraph=False,
                allowlist=character_whitelist or None,
            )

        if not results:
            return OCRReading(text="", confidence=0.0)

        # Each result is (bbox, text, conf); bbox[0] is the top-left corner
        if single_line_mode:
            ordered = sorted(results, key=lambda r: r[0][0][0])
            separator = " "
        else:
            ordered = sorted(results, key=lambda r: (r[0][0][1], r[0][0][0]))
            separator = "\n"

        texts = [text for (_, text, _) in ordered]
        confs = [conf for (_, _, conf) in ordered]
        return OCRReading(
            text=separator.join(texts).strip(),
            confidence=float(sum(confs) / len(confs)) * 100,
        )


def crop_zone(image: np.ndarray, zone: Tuple[float, float, float, float]) -> np.ndarray:
    height, width = image.shape[:2]
    x, y, w, h = zone
    x0 = int(round(x * width))
    y0 = int(round(y * height))
    x1 = min(width, max(x0 + 1, int(round((x + w) * width))))
    y1 = min(height, max(y0 + 1, int(round((y + h) * height))))
    return image[y0:y1, x0:x1]


def encode_png(image: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode('.png', image)
    if not ok:
        raise ValueError("Failed to encode zone image")
    return buffer.tobytes()


class TextRecognizer:
    """
    Reads card text zones from a frame.

    For each strategy (enhancement profile) the frame is enhanced once,
    each zone is cropped and OCR'd. Strategies run in order until the name
    zone clears the early-exit confidence; the best name reading wins.
    """

    def __init__(self, engine: LocalOCRCapability, enhancer: Optional[ImageEnhancer] = None,
                 early_exit_confidence: float = constants.OCR_EARLY_EXIT_CONFIDENCE):
        self.engine = engine
        self.enhancer = enhancer or ImageEnhancer()
        self.early_exit_confidence = early_exit_confidence

    def read_zones(self, frame: np.ndarray, card_type: CardType,
                   zones: Sequence[str] = ("name",)) -> Dict[str, ZoneReading]:
        enhanced = self.enhancer.enhance(frame, PROFILES[card_type])
        readings: Dict[str, ZoneReading] = {}
        for zone in zones:
            crop = crop_zone(enhanced, constants.CARD_ZONES[zone])
            reading = self.engine.recognize(
                encode_png(crop),
                constants.ZONE_WHITELISTS.get(zone, ""),
                True,
            )
            readings[zone] = ZoneReading(zone=zone, text=reading.text, confidence=reading.confidence)
        return readings

    def read(self, frame: np.ndarray, card_type: CardType,
             zones: Sequence[str] = ("name",)) -> TextReading:
        if "name" not in zones:
            zones = ("name",) + tuple(zones)

        best: Optional[TextReading] = None
        tried = []
        for strategy in strategies_for(card_type):
            tried.append(strategy)
            readings = self.read_zones(frame, strategy, zones)
            name = readings["name"]
            logger.debug(f"OCR strategy {strategy.value}: '{name.text}' ({name.confidence:.1f})")

            if best is None or name.confidence > best.confidence:
                best = TextReading(text=name.text, confidence=name.confidence,
                                   strategy=strategy, zones=readings)
            if name.confidence > self.early_exit_confidence:
                break

        best.strategies_tried = tried
        return best
