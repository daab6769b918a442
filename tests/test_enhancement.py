import unittest

import numpy as np
import pytest

from cardlens.core.errors import EnhancementError, UnsupportedProfileError
from cardlens.services.scanner import enhancement as enh
from cardlens.services.scanner.enhancement import ImageEnhancer, canvas_size
from cardlens.services.scanner.models import CardType, EnhancementProfile
from cardlens.services.scanner.profiles import (
    IDENTITY_PROFILE, PROFILES, STANDARD_PROFILE, get_profile, resolve_card_type, strategies_for
)


def random_frame(h=700, w=500, seed=7):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(h, w, 3), dtype=np.uint8)


def solid(value, h=20, w=20):
    return np.full((h, w, 3), value, dtype=np.uint8)


@pytest.mark.parametrize("size,expected", [
    ((2400, 1600), (1200, 800)),
    ((300, 400), (600, 800)),
    ((100, 1000), (120, 1200)),
    ((800, 700), (800, 700)),
    ((1200, 600), (1200, 600)),
])
def test_canvas_size(size, expected):
    assert canvas_size(*size) == expected


@pytest.mark.parametrize("card_type", list(CardType))
def test_identity_after_profile_is_noop(card_type):
    enhancer = ImageEnhancer()
    once = enhancer.enhance(random_frame(), PROFILES[card_type])
    again = enhancer.enhance(once, IDENTITY_PROFILE)
    assert np.array_equal(once, again)


@pytest.mark.parametrize("card_type", list(CardType))
def test_every_stage_stays_in_byte_range(card_type):
    trace = []
    ImageEnhancer().enhance(random_frame(seed=3), PROFILES[card_type], trace=trace)
    assert trace[0][0] == "canvas"
    for stage, image in trace:
        assert image.dtype == np.uint8, stage
        assert image.ndim == 3 and image.shape[2] == 3, stage


def test_enhance_is_deterministic_and_does_not_touch_input():
    frame = random_frame()
    original = frame.copy()
    enhancer = ImageEnhancer()
    a = enhancer.enhance(frame, PROFILES[CardType.FOIL])
    b = enhancer.enhance(frame, PROFILES[CardType.FOIL])
    assert np.array_equal(a, b)
    assert np.array_equal(frame, original)


def test_plan_skips_neutral_stages():
    enhancer = ImageEnhancer()
    assert enhancer.plan(IDENTITY_PROFILE) == ["canvas"]
    assert enhancer.plan(STANDARD_PROFILE) == ["canvas", "brightness_contrast", "sharpen"]
    assert enhancer.plan(PROFILES[CardType.FOIL]) == ["canvas", "glare", "reflections", "brightness_contrast", "text_contrast", "blur"]
    assert enhancer.plan(PROFILES[CardType.BORDERLESS]) == ["canvas", "edges", "colors", "adaptive_contrast"]
    assert enhancer.plan(PROFILES[CardType.LOW_CONTRAST]) == ["canvas", "adaptive_contrast", "equalize", "text_contrast"]


class TestStages(unittest.TestCase):
    def test_glare_only_hits_bright_pixels(self):
        image = solid(250)
        image[0, 0] = (250, 100, 250)
        out = enh.reduce_glare(image, 240, 0.7)
        self.assertEqual(tuple(out[5, 5]), (225, 225, 225))
        self.assertEqual(tuple(out[0, 0]), (250, 100, 250))

    def test_reflection_normalization(self):
        image = solid(50, 40, 40)
        image[:4, :4] = 250
        out = enh.normalize_reflections(image)
        self.assertEqual(tuple(out[0, 0]), (200, 200, 200))
        self.assertEqual(tuple(out[20, 20]), (50, 50, 50))

    def test_gamma_identity_and_brightening(self):
        image = random_frame(10, 10)
        self.assertTrue(np.array_equal(enh.apply_gamma(image, 1.0), image))
        out = enh.apply_gamma(solid(64), 0.5)
        self.assertEqual(out[0, 0, 0], 128)

    def test_brightness_contrast(self):
        out = enh.adjust_brightness_contrast(solid(200), 1.2, 0.0)
        self.assertEqual(out[0, 0, 0], 214)
        out = enh.adjust_brightness_contrast(solid(128), 1.5, 10.0)
        self.assertEqual(out[0, 0, 0], 138)
        out = enh.adjust_brightness_contrast(solid(250), 3.0, 0.0)
        self.assertEqual(out[0, 0, 0], 255)

    def test_shadow_boost(self):
        image = solid(60)
        image[0, 0] = 150
        out = enh.boost_shadows(image, 1.5)
        self.assertEqual(out[5, 5, 0], 90)
        self.assertEqual(out[0, 0, 0], 150)

    def test_invert_only_mostly_dark_images(self):
        self.assertEqual(enh.invert_if_dark(solid(10))[0, 0, 0], 245)
        light = solid(200)
        self.assertTrue(np.array_equal(enh.invert_if_dark(light), light))

    def test_flat_image_has_no_edges(self):
        image = solid(90)
        self.assertTrue(np.array_equal(enh.enhance_edges(image), image))

    def test_edges_brighten_boundaries(self):
        image = solid(0, 20, 20)
        image[:, 10:] = 200
        out = enh.enhance_edges(image)
        self.assertGreater(out[10, 9, 0], image[10, 9, 0])

    def test_adaptive_contrast(self):
        flat = solid(100, 70, 70)
        self.assertTrue(np.array_equal(enh.adaptive_contrast(flat, 64), flat))
        image = solid(100, 64, 64)
        image[0, 0] = 110
        out = enh.adaptive_contrast(image, 64)
        # dark tile: stretched by 1.3 around its mean
        self.assertGreater(int(out[0, 0, 0]), 110)

    def test_equalize_outputs_gray(self):
        out = enh.equalize_histogram(random_frame(30, 30))
        self.assertTrue(np.array_equal(out[:, :, 0], out[:, :, 1]))
        self.assertTrue(np.array_equal(out[:, :, 1], out[:, :, 2]))
        self.assertEqual(out.max(), 255)

    def test_text_contrast_sigmoid(self):
        mid = enh.sigmoid_text_contrast(solid(127), 30)
        self.assertAlmostEqual(int(mid[0, 0, 0]), 127.5, delta=0.5)
        self.assertEqual(len(set(mid[0, 0].tolist())), 1)
        dark = enh.sigmoid_text_contrast(solid(60), 30)
        self.assertLess(int(dark[0, 0, 0]), 60)
        light = enh.sigmoid_text_contrast(solid(200), 20)
        self.assertGreater(int(light[0, 0, 0]), 200)
        # steeper slope pushes further from the middle
        self.assertLess(int(enh.sigmoid_text_contrast(solid(60), 20)[0, 0, 0]), int(dark[0, 0, 0]))

    def test_text_contrast_outputs_gray(self):
        out = enh.sigmoid_text_contrast(random_frame(30, 30), 25)
        self.assertTrue(np.array_equal(out[:, :, 0], out[:, :, 1]))
        self.assertTrue(np.array_equal(out[:, :, 1], out[:, :, 2]))

    def test_color_normalization_balances_channels(self):
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        image[:, :] = (100, 50, 150)
        out = enh.normalize_colors(image)
        self.assertEqual(tuple(out[0, 0]), (100, 100, 100))

    def test_color_normalization_leaves_empty_channel(self):
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        image[:, :] = (0, 100, 200)
        out = enh.normalize_colors(image)
        self.assertEqual(tuple(out[0, 0]), (0, 100, 100))

    def test_convolution_keeps_border(self):
        image = random_frame(30, 30)
        for kernel in (enh.SHARPEN_KERNEL, enh.BLUR_KERNEL):
            out = enh.convolve(image, kernel)
            self.assertTrue(np.array_equal(out[0], image[0]))
            self.assertTrue(np.array_equal(out[-1], image[-1]))
            self.assertTrue(np.array_equal(out[:, 0], image[:, 0]))
            self.assertTrue(np.array_equal(out[:, -1], image[:, -1]))

    def test_blur_flat_image_unchanged(self):
        image = solid(77)
        self.assertTrue(np.array_equal(enh.convolve(image, enh.BLUR_KERNEL), image))

    def test_as_bgr_conversions(self):
        gray = np.zeros((10, 10), dtype=np.uint8)
        self.assertEqual(enh.as_bgr(gray).shape, (10, 10, 3))
        bgra = np.zeros((10, 10, 4), dtype=np.uint8)
        self.assertEqual(enh.as_bgr(bgra).shape, (10, 10, 3))
        with self.assertRaises(ValueError):
            enh.as_bgr(np.zeros((10, 10, 2), dtype=np.uint8))
        with self.assertRaises(ValueError):
            enh.as_bgr(np.zeros((0, 0, 3), dtype=np.uint8))


class TestProfiles(unittest.TestCase):
    def test_get_profile_by_tag_and_alias(self):
        self.assertIs(get_profile("foil"), PROFILES[CardType.FOIL])
        self.assertIs(get_profile("aged"), PROFILES[CardType.OLD_CARD])
        self.assertIs(get_profile("oldCard"), PROFILES[CardType.OLD_CARD])
        self.assertIs(get_profile(CardType.DARK), PROFILES[CardType.DARK])
        self.assertEqual(resolve_card_type("Low-Contrast"), CardType.LOW_CONTRAST)

    def test_unknown_tag_raises(self):
        with self.assertRaises(UnsupportedProfileError):
            get_profile("holographic")
        with self.assertRaises(EnhancementError):
            get_profile(42)

    def test_profiles_are_frozen(self):
        with self.assertRaises(Exception):
            STANDARD_PROFILE.gamma = 2.0

    def test_preset_values(self):
        foil = PROFILES[CardType.FOIL]
        self.assertEqual(foil.glare_reduction, 0.7)
        self.assertEqual(foil.reflection_threshold, 240)
        self.assertEqual(PROFILES[CardType.DARK].gamma, 0.6)
        self.assertEqual(PROFILES[CardType.BORDERLESS].adaptive_tile_size, 64)
        self.assertTrue(PROFILES[CardType.BORDERLESS].normalize_colors)
        self.assertEqual(foil.text_contrast_slope, 30)
        self.assertEqual(PROFILES[CardType.LOW_CONTRAST].text_contrast_slope, 20)
        self.assertEqual(PROFILES[CardType.STANDARD].denoise, "sharpen")
        self.assertEqual(EnhancementProfile().denoise, None)

    def test_strategies(self):
        self.assertEqual(strategies_for(CardType.FOIL), [CardType.FOIL, CardType.STANDARD, CardType.OLD_CARD])
        self.assertEqual(strategies_for(CardType.OLD_CARD), [CardType.OLD_CARD, CardType.STANDARD])
        self.assertEqual(strategies_for(CardType.DARK), [CardType.DARK, CardType.STANDARD])
        self.assertEqual(strategies_for(CardType.STANDARD), [CardType.STANDARD])
