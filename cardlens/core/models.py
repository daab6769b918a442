from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, Field, field_validator


class PriceSnapshot(BaseModel):
    model_config = {"frozen": True}

    usd: Optional[float] = None
    usd_foil: Optional[float] = None
    eur: Optional[float] = None
    tix: Optional[float] = None

    @field_validator("usd", "usd_foil", "eur", "tix", mode="before")
    @classmethod
    def parse_price(cls, v):
        # Bulk data ships prices as strings or null
        if v in (None, ""):
            return None
        return float(v)


class CardRecord(BaseModel):
    """One immutable catalog entry."""
    model_config = {"frozen": True, "populate_by_name": True}

    id: str
    name: str
    set_code: str = Field("", alias="set")
    set_name: str = ""
    collector_number: str = ""
    rarity: str = "common"
    type_line: str = ""
    mana_cost: str = ""
    cmc: float = 0.0
    colors: FrozenSet[str] = frozenset()
    price_snapshot: PriceSnapshot = Field(default_factory=PriceSnapshot, alias="prices")
    image_refs: Dict[str, str] = Field(default_factory=dict, alias="image_uris")
    oracle_text: str = ""
    lang: str = "en"

    @property
    def set_number_key(self) -> str:
        return f"{self.set_code}_{self.collector_number}".lower()


class MatchType(str, Enum):
    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchCandidate(BaseModel):
    card: CardRecord
    similarity: float
    match_type: MatchType
