from typing import Dict, List, Union

from cardlens.core.errors import UnsupportedProfileError
from cardlens.services.scanner.models import CardType, EnhancementProfile

FOIL_PROFILE = EnhancementProfile(
    card_type=CardType.FOIL,
    glare_reduction=0.7,
    reflection_threshold=240,
    normalize_reflections=True,
    contrast_boost=1.3,
    text_contrast_slope=30,
    denoise="blur",
)

OLD_CARD_PROFILE = EnhancementProfile(
    card_type=CardType.OLD_CARD,
    gamma=0.8,
    contrast_boost=1.5,
    brightness=1.2,
    invert_dark_text=True,
    denoise="blur",
)

BORDERLESS_PROFILE = EnhancementProfile(
    card_type=CardType.BORDERLESS,
    edge_enhance=True,
    normalize_colors=True,
    adaptive_tile_size=64,
)

DARK_PROFILE = EnhancementProfile(
    card_type=CardType.DARK,
    gamma=0.6,
    brightness=1.4,
    contrast_boost=1.3,
    shadow_boost=1.5,
)

LOW_CONTRAST_PROFILE = EnhancementProfile(
    card_type=CardType.LOW_CONTRAST,
    equalize_histogram=True,
    adaptive_tile_size=64,
    text_contrast_slope=20,
)

STANDARD_PROFILE = EnhancementProfile(
    card_type=CardType.STANDARD,
    brightness=1.1,
    contrast_boost=1.2,
    denoise="sharpen",
)

# Every stage neutral: only canvas normalization runs
IDENTITY_PROFILE = EnhancementProfile()

PROFILES: Dict[CardType, EnhancementProfile] = {
    CardType.FOIL: FOIL_PROFILE,
    CardType.OLD_CARD: OLD_CARD_PROFILE,
    CardType.BORDERLESS: BORDERLESS_PROFILE,
    CardType.DARK: DARK_PROFILE,
    CardType.LOW_CONTRAST: LOW_CONTRAST_PROFILE,
    CardType.STANDARD: STANDARD_PROFILE,
}

TAG_ALIASES = {
    "aged": CardType.OLD_CARD,
    "old": CardType.OLD_CARD,
    "oldcard": CardType.OLD_CARD,
    "dark_card": CardType.DARK,
    "specialty_foil": CardType.FOIL,
    "normal": CardType.STANDARD,
}

# Profiles tried in order when reading text, best first
STRATEGIES: Dict[CardType, List[CardType]] = {
    CardType.FOIL: [CardType.FOIL, CardType.STANDARD, CardType.OLD_CARD],
    CardType.OLD_CARD: [CardType.OLD_CARD, CardType.STANDARD],
}


def resolve_card_type(tag: Union[str, CardType]) -> CardType:
    if isinstance(tag, CardType):
        return tag
    if not isinstance(tag, str):
        raise UnsupportedProfileError(tag)
    key = tag.strip().lower().replace("-", "_")
    if key in TAG_ALIASES:
        return TAG_ALIASES[key]
    try:
        return CardType(key)
    except ValueError:
        raise UnsupportedProfileError(tag)


def get_profile(tag: Union[str, CardType]) -> EnhancementProfile:
    return PROFILES[resolve_card_type(tag)]


def strategies_for(card_type: CardType) -> List[CardType]:
    if card_type in STRATEGIES:
        return list(STRATEGIES[card_type])
    if card_type == CardType.STANDARD:
        return [CardType.STANDARD]
    return [card_type, CardType.STANDARD]
