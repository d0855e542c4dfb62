import unittest
from dataclasses import replace

from squeeze.models import (
    ArtifactParams,
    ArtifactTier,
    AvifParams,
    AvifTier,
    CompressionRequest,
    OutputFormat,
    SourceImageInfo,
)
from squeeze.planner import (
    build_fallback_plan,
    build_plan,
    encode_options,
    fit_inside,
    plan_to_dict,
    resolve_resize_target,
    select_artifact_tier,
    select_avif_tier,
    select_format,
)
from squeeze.settings import DEFAULT_SETTINGS, ArtifactRule


AVIF_ONLY_KEYS = {"tile_rows", "tile_cols", "min_quantizer", "max_quantizer", "effort"}


class TestSelectFormat(unittest.TestCase):
    def test_static_modern_is_avif(self):
        self.assertEqual(select_format(True, False), OutputFormat.AVIF)

    def test_static_legacy_is_jpeg(self):
        self.assertEqual(select_format(False, False), OutputFormat.JPEG)

    def test_animated_is_always_webp(self):
        self.assertEqual(select_format(True, True), OutputFormat.WEBP)
        self.assertEqual(select_format(False, True), OutputFormat.WEBP)


class TestResizeTarget(unittest.TestCase):
    def test_no_resize_within_ceiling(self):
        self.assertIsNone(resolve_resize_target(OutputFormat.AVIF, 16384, 16384))

    def test_wide_image_fits_inside_ceiling(self):
        self.assertEqual(resolve_resize_target(OutputFormat.AVIF, 20000, 10000), (16384, 8192))

    def test_tall_image_fits_inside_ceiling(self):
        self.assertEqual(resolve_resize_target(OutputFormat.AVIF, 1000, 32768), (500, 16384))

    def test_jpeg_and_webp_never_resized(self):
        self.assertIsNone(resolve_resize_target(OutputFormat.JPEG, 40000, 40000))
        self.assertIsNone(resolve_resize_target(OutputFormat.WEBP, 40000, 40000))

    def test_ceiling_comes_from_settings(self):
        settings = replace(DEFAULT_SETTINGS, heif_max_dimension=100)
        self.assertEqual(resolve_resize_target(OutputFormat.AVIF, 400, 200, settings), (100, 50))

    def test_fit_inside_never_upscales(self):
        self.assertEqual(fit_inside(300, 200, 1000, 1000), (300, 200))

    def test_fit_inside_keeps_at_least_one_pixel(self):
        self.assertEqual(fit_inside(10000, 1, 100, 100), (100, 1))


class TestArtifactTier(unittest.TestCase):
    def test_large(self):
        tier, params = select_artifact_tier(4_000_000)
        self.assertEqual(tier, ArtifactTier.LARGE)
        self.assertEqual(params, ArtifactParams(0.40, 0.15, 0.80, 0.85))

    def test_medium(self):
        tier, params = select_artifact_tier(2_000_000)
        self.assertEqual(tier, ArtifactTier.MEDIUM)
        self.assertEqual(params.saturation_factor, 0.90)

    def test_small(self):
        tier, params = select_artifact_tier(800_000)
        self.assertEqual(tier, ArtifactTier.SMALL)
        self.assertEqual(params.saturation_factor, 0.95)

    def test_lowest_tier_still_filters(self):
        tier, params = select_artifact_tier(300_000)
        self.assertEqual(tier, ArtifactTier.NONE_BUT_SOFTEN)
        self.assertEqual(params.saturation_factor, 1.00)
        self.assertEqual(params.blur_radius, 0.30)
        self.assertEqual(params.sharpen_sigma, 0.50)

    def test_thresholds_are_exclusive(self):
        self.assertEqual(select_artifact_tier(3_000_000)[0], ArtifactTier.MEDIUM)
        self.assertEqual(select_artifact_tier(1_000_000)[0], ArtifactTier.SMALL)
        self.assertEqual(select_artifact_tier(500_000)[0], ArtifactTier.NONE_BUT_SOFTEN)

    def test_table_without_catch_all_is_rejected(self):
        settings = replace(
            DEFAULT_SETTINGS,
            artifact_rules=(ArtifactRule(10, ArtifactTier.LARGE, ArtifactParams(1, 1, 1, 1)),),
        )
        with self.assertRaises(ValueError):
            select_artifact_tier(5, settings)


class TestAvifTier(unittest.TestCase):
    def test_large(self):
        self.assertEqual(select_avif_tier(5000, 3000), (AvifTier.LARGE, AvifParams(4, 4, 30, 50, 3)))

    def test_medium(self):
        self.assertEqual(select_avif_tier(1500, 900), (AvifTier.MEDIUM, AvifParams(2, 2, 28, 48, 4)))

    def test_small(self):
        self.assertEqual(select_avif_tier(640, 480), (AvifTier.SMALL, AvifParams(1, 1, 26, 48, 4)))

    def test_uses_larger_side(self):
        self.assertEqual(select_avif_tier(300, 2001)[0], AvifTier.LARGE)
        self.assertEqual(select_avif_tier(1000, 1000)[0], AvifTier.SMALL)


class TestBuildPlan(unittest.TestCase):
    def test_static_modern_within_ceiling(self):
        for w, h in [(1, 1), (640, 480), (16384, 100), (16384, 16384)]:
            plan = build_plan(SourceImageInfo(w, h), CompressionRequest(modern_format=True))
            self.assertEqual(plan.output_format, OutputFormat.AVIF)
            self.assertIsNone(plan.resize_target)

    def test_large_static_modern(self):
        plan = build_plan(SourceImageInfo(5000, 3000), CompressionRequest(modern_format=True, quality=60))
        self.assertEqual(plan.avif_tier, AvifTier.LARGE)
        self.assertEqual(plan.artifact_tier, ArtifactTier.LARGE)
        self.assertTrue(plan.applied_sharpen)
        self.assertEqual(plan.sharpen, DEFAULT_SETTINGS.sharpen)
        self.assertEqual(plan.quality, 60)

    def test_oversized_avif_is_clamped(self):
        plan = build_plan(SourceImageInfo(20000, 10000), CompressionRequest(modern_format=True))
        self.assertEqual(plan.resize_target, (16384, 8192))

    def test_animated_skips_filters_and_avif(self):
        for modern in (True, False):
            plan = build_plan(SourceImageInfo(3000, 3000, frame_count=12), CompressionRequest(modern_format=modern))
            self.assertEqual(plan.output_format, OutputFormat.WEBP)
            self.assertIsNone(plan.artifact_tier)
            self.assertIsNone(plan.avif)
            self.assertFalse(plan.applied_sharpen)
            self.assertIsNone(plan.resize_target)
            self.assertTrue(plan.animated)

    def test_small_jpeg_gets_soften_tier_without_secondary_sharpen(self):
        plan = build_plan(SourceImageInfo(640, 480), CompressionRequest())
        self.assertEqual(plan.output_format, OutputFormat.JPEG)
        self.assertEqual(plan.artifact_tier, ArtifactTier.NONE_BUT_SOFTEN)
        self.assertFalse(plan.applied_sharpen)
        self.assertIsNone(plan.avif_tier)

    def test_secondary_sharpen_threshold_is_exclusive(self):
        at_threshold = build_plan(SourceImageInfo(1000, 500), CompressionRequest())
        above_threshold = build_plan(SourceImageInfo(500_001, 1), CompressionRequest())
        self.assertFalse(at_threshold.applied_sharpen)
        self.assertIsNone(at_threshold.sharpen)
        self.assertTrue(above_threshold.applied_sharpen)
        self.assertEqual(above_threshold.sharpen, DEFAULT_SETTINGS.sharpen)

    def test_secondary_sharpen_threshold_comes_from_settings(self):
        settings = replace(DEFAULT_SETTINGS, secondary_sharpen_min_pixels=10)
        plan = build_plan(SourceImageInfo(100, 100), CompressionRequest(modern_format=True), settings)
        self.assertTrue(plan.applied_sharpen)

    def test_grayscale_is_carried(self):
        plan = build_plan(SourceImageInfo(640, 480), CompressionRequest(grayscale=True))
        self.assertTrue(plan.grayscale)

    def test_plan_is_deterministic(self):
        info = SourceImageInfo(2500, 1800)
        request = CompressionRequest(modern_format=True, quality=45, grayscale=True)
        self.assertEqual(build_plan(info, request), build_plan(info, request))
        self.assertEqual(plan_to_dict(build_plan(info, request)), plan_to_dict(build_plan(info, request)))


class TestFallbackPlan(unittest.TestCase):
    def test_static_falls_back_to_plain_jpeg(self):
        plan = build_fallback_plan(SourceImageInfo(20000, 10000), CompressionRequest(modern_format=True, quality=50))
        self.assertEqual(plan.output_format, OutputFormat.JPEG)
        self.assertTrue(plan.fallback)
        self.assertEqual(plan.quality, 50)
        self.assertIsNone(plan.resize_target)
        self.assertIsNone(plan.artifact)
        self.assertIsNone(plan.avif)
        self.assertFalse(plan.applied_sharpen)

    def test_animated_falls_back_to_webp(self):
        plan = build_fallback_plan(SourceImageInfo(100, 100, frame_count=3), CompressionRequest(modern_format=True))
        self.assertEqual(plan.output_format, OutputFormat.WEBP)


class TestEncodeOptions(unittest.TestCase):
    def test_avif_options(self):
        plan = build_plan(SourceImageInfo(1500, 900), CompressionRequest(modern_format=True, quality=40))
        opts = encode_options(plan)
        self.assertEqual(opts["quality"], 40)
        self.assertEqual(opts["alpha_quality"], 80)
        self.assertEqual(opts["chroma_subsampling"], "4:2:0")
        self.assertTrue(opts["smart_subsample"])
        self.assertEqual(opts["tile_rows"], 2)
        self.assertEqual(opts["tile_cols"], 2)
        self.assertEqual(opts["min_quantizer"], 28)
        self.assertEqual(opts["max_quantizer"], 48)
        self.assertEqual(opts["effort"], 4)
        self.assertNotIn("loop", opts)

    def test_jpeg_has_no_avif_options(self):
        opts = encode_options(build_plan(SourceImageInfo(1500, 900), CompressionRequest()))
        self.assertFalse(AVIF_ONLY_KEYS & set(opts))

    def test_animated_loops_forever(self):
        plan = build_plan(SourceImageInfo(100, 100, frame_count=4), CompressionRequest(modern_format=True))
        self.assertEqual(encode_options(plan)["loop"], 0)

    def test_fallback_keeps_only_quality(self):
        plan = build_fallback_plan(SourceImageInfo(100, 100), CompressionRequest(quality=33))
        self.assertEqual(encode_options(plan), {"quality": 33})


if __name__ == "__main__":
    unittest.main()
