from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from cardlens.core.errors import FailureReason
from cardlens.core.models import CardRecord, MatchCandidate


class CardType(str, Enum):
    FOIL = "foil"
    OLD_CARD = "old_card"
    BORDERLESS = "borderless"
    DARK = "dark"
    LOW_CONTRAST = "low_contrast"
    STANDARD = "standard"


class EnhancementProfile(BaseModel):
    """Pixel transform settings for one printing style. Neutral values skip a stage."""
    model_config = {"frozen": True}

    card_type: Optional[CardType] = None
    glare_reduction: float = 1.0
    reflection_threshold: int = 240
    normalize_reflections: bool = False
    contrast_boost: float = 1.0
    gamma: float = 1.0
    brightness: float = 0.0
    shadow_boost: float = 1.0
    invert_dark_text: bool = False
    edge_enhance: bool = False
    normalize_colors: bool = False
    adaptive_tile_size: int = 0
    equalize_histogram: bool = False
    text_contrast_slope: float = 0.0
    denoise: Optional[Literal["blur", "sharpen"]] = None


class OCRReading(BaseModel):
    text: str = ""
    confidence: float = 0.0  # 0-100


class ZoneReading(BaseModel):
    zone: str
    text: str = ""
    confidence: float = 0.0


class TextReading(BaseModel):
    """Best OCR output for one frame across the strategies that were tried."""
    text: str = ""
    confidence: float = 0.0
    strategy: Optional[CardType] = None
    zones: Dict[str, ZoneReading] = {}
    strategies_tried: List[CardType] = []


class RemoteIdentification(BaseModel):
    success: bool
    card_name: Optional[str] = None
    confidence: float = 0.0
    unclear: bool = False
    diagnostic: str = ""


class RecognitionMethod(str, Enum):
    REMOTE_VISION = "remote_vision"
    LOCAL_OCR = "local_ocr"


class ScanState(str, Enum):
    IDLE = "idle"
    ATTEMPT_REMOTE = "attempt_remote"
    ATTEMPT_LOCAL = "attempt_local"
    RESOLVED = "resolved"


class RecognitionAttempt(BaseModel):
    method: RecognitionMethod
    success: bool = False
    raw_text: str = ""
    card_name: Optional[str] = None
    confidence: float = 0.0
    match_similarity: Optional[float] = None
    elapsed_ms: int = 0
    failure_reason: Optional[FailureReason] = None
    diagnostic: str = ""
    cached: bool = False
    card: Optional[CardRecord] = None
    candidates: List[MatchCandidate] = []


class RecognitionResult(BaseModel):
    """A resolved card name."""
    card_name: str
    confidence: float
    method: RecognitionMethod
    processing_time_ms: int
    match_similarity: Optional[float] = None
    card: Optional[CardRecord] = None
    candidates: List[MatchCandidate] = []
    card_type: Optional[CardType] = None
    attempts: List[RecognitionAttempt] = []
    states: List[ScanState] = []

    @property
    def matched(self) -> bool:
        return True


class NoMatchReason(str, Enum):
    REMOTE_UNAVAILABLE = "remote_unavailable"
    REMOTE_UNCLEAR = "remote_unclear"
    REMOTE_TIMEOUT = "remote_timeout"
    REMOTE_ERROR = "remote_error"
    LOCAL_LOW_CONFIDENCE = "local_low_confidence"
    LOCAL_TIMEOUT = "local_timeout"
    LOCAL_ERROR = "local_error"
    NO_CATALOG_MATCH = "no_catalog_match"


NO_MATCH_MESSAGES = {
    NoMatchReason.REMOTE_UNAVAILABLE: "Vision service is not reachable and the local reading was not usable - start the vision proxy or rescan",
    NoMatchReason.REMOTE_UNCLEAR: "Card image unclear to the vision service - try better lighting and stable positioning",
    NoMatchReason.REMOTE_TIMEOUT: "Vision service took too long to answer - rescan the card",
    NoMatchReason.REMOTE_ERROR: "Vision service returned an error - rescan the card",
    NoMatchReason.LOCAL_LOW_CONFIDENCE: "Card name could not be read reliably - improve lighting and keep the card steady",
    NoMatchReason.LOCAL_TIMEOUT: "Text recognition took too long - rescan the card",
    NoMatchReason.LOCAL_ERROR: "Text recognition failed - rescan the card",
    NoMatchReason.NO_CATALOG_MATCH: "Text was read but no card in the catalog resembles it - check the card is in the catalog",
}


class NoMatch(BaseModel):
    reason: NoMatchReason
    message: str
    details: str = ""
    processing_time_ms: int = 0
    card_type: Optional[CardType] = None
    attempts: List[RecognitionAttempt] = []
    states: List[ScanState] = []

    @property
    def matched(self) -> bool:
        return False
