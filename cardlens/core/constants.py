BULK_DATA_API_URL = "https://api.scryfall.com/bulk-data"
BULK_DATA_TYPE = "default_cards"
BULK_DATA_MAX_AGE_HOURS = 24

# Cards that never show up on a scanned table
EXCLUDED_SET_TYPES = {"token", "memorabilia"}
EXCLUDED_LAYOUTS = {"token", "emblem", "double_faced_token", "art_series"}

# Fuzzy matching
FUZZY_MAX_RESULTS = 10
FUZZY_MIN_SIMILARITY = 0.3
LOCAL_FUZZY_MIN_SIMILARITY = 0.4
MATCH_TYPE_HIGH = 0.8
MATCH_TYPE_MEDIUM = 0.6
TEXT_SEARCH_LIMIT = 20
TEXT_SEARCH_FIELDS = ("name", "type_line", "set", "oracle_text")

# Arbitration (confidence is on a 0-100 scale)
REMOTE_ACCEPT_CONFIDENCE = 90.0
LOCAL_ACCEPT_CONFIDENCE = 50.0
OCR_EARLY_EXIT_CONFIDENCE = 75.0
REMOTE_COOLDOWN_MS = 2000
REMOTE_CACHE_TTL_MS = 8000
REMOTE_TIMEOUT_S = 15.0
LOCAL_TIMEOUT_S = 20.0
REMOTE_SUCCESS_CONFIDENCE = 95.0
REMOTE_JPEG_QUALITY = 80

# Canvas normalization
CANVAS_MAX_DIM = 1200
CANVAS_MIN_DIM = 600

# Pixel transform constants
GLARE_OFFSET = 50
REFLECTION_RATIO = 1.5
REFLECTION_SCALE = 0.8
SHADOW_THRESHOLD = 100
DARK_PIXEL_THRESHOLD = 128
DARK_FRACTION_THRESHOLD = 0.6
EDGE_WEIGHT = 0.3
ADAPTIVE_DARK_FACTOR = 1.3
ADAPTIVE_LIGHT_FACTOR = 1.1
LUMA_WEIGHTS = (0.299, 0.587, 0.114)  # R, G, B

# Card regions as fractions of the frame: (x, y, width, height)
CARD_ZONES = {
    "name": (0.04, 0.025, 0.78, 0.09),
    "type_line": (0.06, 0.55, 0.80, 0.06),
    "collector": (0.04, 0.90, 0.40, 0.06),
}

NAME_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz',. -"
COLLECTOR_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789/ -"
ZONE_WHITELISTS = {
    "name": NAME_WHITELIST,
    "type_line": NAME_WHITELIST,
    "collector": COLLECTOR_WHITELIST,
}

# Logging
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5
