import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np

from cardlens.core import constants
from cardlens.services.scanner.models import EnhancementProfile

logger = logging.getLogger(__name__)

SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)
BLUR_KERNEL = np.full((3, 3), 1.0 / 9.0, dtype=np.float32)


def to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def pixel_brightness(image: np.ndarray) -> np.ndarray:
    """Per-pixel (R+G+B)/3."""
    return image.astype(np.float32).mean(axis=2)


def as_bgr(frame: np.ndarray) -> np.ndarray:
    if not isinstance(frame, np.ndarray) or frame.size == 0:
        raise ValueError("Frame must be a non-empty numpy array")
    if frame.dtype != np.uint8:
        frame = to_uint8(frame)
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    if frame.ndim == 3 and frame.shape[2] == 3:
        return frame.copy()
    raise ValueError(f"Unsupported frame shape {frame.shape}")


def canvas_size(width: int, height: int,
                max_dim: int = constants.CANVAS_MAX_DIM,
                min_dim: int = constants.CANVAS_MIN_DIM) -> Tuple[int, int]:
    longest = max(width, height)
    shortest = min(width, height)
    if longest > max_dim:
        scale = max_dim / longest
    elif shortest < min_dim:
        # Upscale small frames, but never past the max edge
        scale = min(min_dim / shortest, max_dim / longest)
    else:
        return width, height
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def normalize_canvas(image: np.ndarray) -> np.ndarray:
    height, width = image.shape[:2]
    new_w, new_h = canvas_size(width, height)
    if (new_w, new_h) == (width, height):
        return image
    interpolation = cv2.INTER_AREA if new_w < width else cv2.INTER_CUBIC
    return cv2.resize(image, (new_w, new_h), interpolation=interpolation)


def reduce_glare(image: np.ndarray, threshold: int, reduction: float) -> np.ndarray:
    mask = np.all(image > threshold, axis=2)
    out = image.copy()
    if mask.any():
        out[mask] = to_uint8(image[mask].astype(np.float32) * reduction + constants.GLARE_OFFSET)
    return out


def normalize_reflections(image: np.ndarray) -> np.ndarray:
    brightness = pixel_brightness(image)
    mask = brightness > brightness.mean() * constants.REFLECTION_RATIO
    out = image.copy()
    if mask.any():
        out[mask] = to_uint8(image[mask].astype(np.float32) * constants.REFLECTION_SCALE)
    return out


def apply_gamma(image: np.ndarray, gamma: float) -> np.ndarray:
    table = to_uint8(255.0 * (np.arange(256) / 255.0) ** gamma)
    return cv2.LUT(image, table)


def adjust_brightness_contrast(image: np.ndarray, contrast: float, brightness: float) -> np.ndarray:
    return to_uint8((image.astype(np.float32) - 128.0) * contrast + 128.0 + brightness)


def boost_shadows(image: np.ndarray, factor: float) -> np.ndarray:
    mask = pixel_brightness(image) < constants.SHADOW_THRESHOLD
    out = image.copy()
    if mask.any():
        out[mask] = to_uint8(image[mask].astype(np.float32) * factor)
    return out


def invert_if_dark(image: np.ndarray) -> np.ndarray:
    dark_fraction = (pixel_brightness(image) < constants.DARK_PIXEL_THRESHOLD).mean()
    if dark_fraction > constants.DARK_FRACTION_THRESHOLD:
        return 255 - image
    return image


def enhance_edges(image: np.ndarray) -> np.ndarray:
    if min(image.shape[:2]) < 3:
        return image
    gray = pixel_brightness(image)
    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = np.sqrt(gx * gx + gy * gy) * constants.EDGE_WEIGHT

    out = image.copy()
    interior = image[1:-1, 1:-1].astype(np.float32) + magnitude[1:-1, 1:-1, None]
    out[1:-1, 1:-1] = to_uint8(interior)
    return out


def normalize_colors(image: np.ndarray) -> np.ndarray:
    """Scales each channel so its mean matches the mean over all channels."""
    pixels = image.astype(np.float32)
    channel_means = pixels.reshape(-1, 3).mean(axis=0)
    overall = channel_means.mean()
    factors = np.ones(3, dtype=np.float32)
    nonzero = channel_means > 0
    factors[nonzero] = overall / channel_means[nonzero]
    return to_uint8(pixels * factors)


def adaptive_contrast(image: np.ndarray, tile_size: int) -> np.ndarray:
    """Stretches each tile around its own mean; dark tiles get the stronger factor."""
    height, width = image.shape[:2]
    out = image.copy()
    for y in range(0, height, tile_size):
        for x in range(0, width, tile_size):
            tile = image[y:y + tile_size, x:x + tile_size].astype(np.float32)
            mean = tile.mean()
            factor = constants.ADAPTIVE_DARK_FACTOR if mean < 128 else constants.ADAPTIVE_LIGHT_FACTOR
            out[y:y + tile_size, x:x + tile_size] = to_uint8((tile - mean) * factor + mean)
    return out


def equalize_histogram(image: np.ndarray) -> np.ndarray:
    r_w, g_w, b_w = constants.LUMA_WEIGHTS
    b, g, r = (image[:, :, i].astype(np.float32) for i in range(3))
    gray = to_uint8(r_w * r + g_w * g + b_w * b)

    hist = np.bincount(gray.ravel(), minlength=256)
    cdf = np.cumsum(hist)
    table = to_uint8(cdf / gray.size * 255.0)
    equalized = table[gray]
    return np.repeat(equalized[:, :, None], 3, axis=2)


def sigmoid_text_contrast(image: np.ndarray, slope: float) -> np.ndarray:
    """Pushes luma through a sigmoid centred on 127 and returns it as grey BGR."""
    r_w, g_w, b_w = constants.LUMA_WEIGHTS
    b, g, r = (image[:, :, i].astype(np.float32) for i in range(3))
    gray = r_w * r + g_w * g + b_w * b
    curved = to_uint8(255.0 / (1.0 + np.exp(-(gray - 127.0) / slope)))
    return np.repeat(curved[:, :, None], 3, axis=2)


def convolve(image: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """3x3 filter over the interior; the 1px border is copied through."""
    if min(image.shape[:2]) < 3:
        return image
    filtered = cv2.filter2D(image.astype(np.float32), -1, kernel)
    out = image.copy()
    out[1:-1, 1:-1] = to_uint8(filtered[1:-1, 1:-1])
    return out


class ImageEnhancer:
    """
    Applies an EnhancementProfile to a BGR frame.

    Stateless: the same frame and profile always give the same pixels.
    Stages whose settings are neutral are skipped.
    """

    def plan(self, profile: EnhancementProfile) -> List[str]:
        stages = ["canvas"]
        if profile.glare_reduction < 1.0:
            stages.append("glare")
        if profile.normalize_reflections:
            stages.append("reflections")
        if profile.gamma != 1.0:
            stages.append("gamma")
        if profile.contrast_boost != 1.0 or profile.brightness != 0.0:
            stages.append("brightness_contrast")
        if profile.shadow_boost != 1.0:
            stages.append("shadows")
        if profile.invert_dark_text:
            stages.append("invert")
        if profile.edge_enhance:
            stages.append("edges")
        if profile.normalize_colors:
            stages.append("colors")
        if profile.adaptive_tile_size > 0:
            stages.append("adaptive_contrast")
        if profile.equalize_histogram:
            stages.append("equalize")
        if profile.text_contrast_slope > 0:
            stages.append("text_contrast")
        if profile.denoise:
            stages.append(profile.denoise)
        return stages

    def enhance(self, frame: np.ndarray, profile: EnhancementProfile,
                trace: Optional[list] = None) -> np.ndarray:
        image = as_bgr(frame)
        for stage in self.plan(profile):
            image = self._apply(stage, image, profile)
            if trace is not None:
                trace.append((stage, image))
        return image

    def _apply(self, stage: str, image: np.ndarray, profile: EnhancementProfile) -> np.ndarray:
        if stage == "canvas":
            return normalize_canvas(image)
        if stage == "glare":
            return reduce_glare(image, profile.reflection_threshold, profile.glare_reduction)
        if stage == "reflections":
            return normalize_reflections(image)
        if stage == "gamma":
            return apply_gamma(image, profile.gamma)
        if stage == "brightness_contrast":
            return adjust_brightness_contrast(image, profile.contrast_boost, profile.brightness)
        if stage == "shadows":
            return boost_shadows(image, profile.shadow_boost)
        if stage == "invert":
            return invert_if_dark(image)
        if stage == "edges":
            return enhance_edges(image)
        if stage == "colors":
            return normalize_colors(image)
        if stage == "adaptive_contrast":
            return adaptive_contrast(image, profile.adaptive_tile_size)
        if stage == "equalize":
            return equalize_histogram(image)
        if stage == "text_contrast":
            return sigmoid_text_contrast(image, profile.text_contrast_slope)
        if stage == "blur":
            return convolve(image, BLUR_KERNEL)
        if stage == "sharpen":
            return convolve(image, SHARPEN_KERNEL)
        raise ValueError(f"Unknown enhancement stage '{stage}'")
