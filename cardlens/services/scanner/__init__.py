import importlib.util
import logging

logger = logging.getLogger(__name__)

# EasyOCR (and torch behind it) is only needed once the local OCR path runs
OCR_AVAILABLE = importlib.util.find_spec("easyocr") is not None

if not OCR_AVAILABLE:
    logger.warning("EasyOCR is not installed. Local OCR fallback will fail until it is.")
