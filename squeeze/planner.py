from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional, Sequence, TypeVar

from .models import (
    ArtifactParams,
    ArtifactTier,
    AvifParams,
    AvifTier,
    CompressionRequest,
    EncodePlan,
    OutputFormat,
    SourceImageInfo,
)
from .settings import DEFAULT_SETTINGS, ArtifactRule, AvifRule, CompressSettings


_Rule = TypeVar("_Rule", ArtifactRule, AvifRule)


def _first_match(rules: Sequence[_Rule], value: int) -> _Rule:
    for rule in rules:
        if rule.above is None or value > rule.above:
            return rule
    # Tables always end with a catch-all row; reaching here means a bad override.
    raise ValueError(f"No tier matches value {value}; tier table needs a catch-all row")


def select_format(modern_format: bool, is_animated: bool) -> OutputFormat:
    # Animated output is always WebP: per-frame AVIF/JPEG hits container limits.
    if is_animated:
        return OutputFormat.WEBP
    return OutputFormat.AVIF if modern_format else OutputFormat.JPEG


def resolve_resize_target(
    output_format: OutputFormat,
    width: int,
    height: int,
    settings: CompressSettings = DEFAULT_SETTINGS,
) -> Optional[tuple[int, int]]:
    """
    Size the image must shrink to, or None when no resize is needed.

    The box is min(side, ceiling) per side and the image is fit inside it,
    so the result is already the final pixel size. Only AVIF output is
    clamped; JPEG and WebP are never resized here.
    """
    ceiling = settings.heif_max_dimension
    if output_format != OutputFormat.AVIF:
        return None
    if width <= ceiling and height <= ceiling:
        return None
    return fit_inside(width, height, min(width, ceiling), min(height, ceiling))


def fit_inside(width: int, height: int, box_width: int, box_height: int) -> tuple[int, int]:
    """
    Size that fits (width, height) inside the box, keeping aspect ratio.

    Never upscales and never crops.
    """
    scale = min(box_width / width, box_height / height, 1.0)
    if scale >= 1.0:
        return width, height
    new_w = max(1, min(box_width, round(width * scale)))
    new_h = max(1, min(box_height, round(height * scale)))
    return new_w, new_h


def select_artifact_tier(
    pixel_count: int,
    settings: CompressSettings = DEFAULT_SETTINGS,
) -> tuple[ArtifactTier, ArtifactParams]:
    rule = _first_match(settings.artifact_rules, pixel_count)
    return rule.tier, rule.params


def select_avif_tier(
    width: int,
    height: int,
    settings: CompressSettings = DEFAULT_SETTINGS,
) -> tuple[AvifTier, AvifParams]:
    rule = _first_match(settings.avif_rules, max(width, height))
    return rule.tier, rule.params


def build_plan(
    info: SourceImageInfo,
    request: CompressionRequest,
    settings: CompressSettings = DEFAULT_SETTINGS,
) -> EncodePlan:
    """
    Initial plan for a request.

    Pure: the same info, request and settings always give an equal plan.
    """
    out_format = select_format(request.modern_format, info.is_animated)
    resize_target = resolve_resize_target(out_format, info.width, info.height, settings)

    artifact_tier = None
    artifact = None
    applied_sharpen = False

    if not info.is_animated:
        if out_format in (OutputFormat.JPEG, OutputFormat.AVIF):
            artifact_tier, artifact = select_artifact_tier(info.pixel_count, settings)
        # Runs on top of the tier sharpen, for every output format.
        applied_sharpen = info.pixel_count > settings.secondary_sharpen_min_pixels

    avif_tier = None
    avif = None
    if out_format == OutputFormat.AVIF:
        avif_tier, avif = select_avif_tier(info.width, info.height, settings)

    return EncodePlan(
        output_format=out_format,
        quality=int(request.quality),
        grayscale=bool(request.grayscale),
        animated=info.is_animated,
        resize_target=resize_target,
        artifact_tier=artifact_tier,
        artifact=artifact,
        avif_tier=avif_tier,
        avif=avif,
        applied_sharpen=applied_sharpen,
        sharpen=settings.sharpen if applied_sharpen else None,
    )


def build_fallback_plan(info: SourceImageInfo, request: CompressionRequest) -> EncodePlan:
    """
    Plan for the single retry after a capacity error.

    Keeps only quality and grayscale. No resize, no filters, no AVIF tuning.
    """
    return EncodePlan(
        output_format=OutputFormat.WEBP if info.is_animated else OutputFormat.JPEG,
        quality=int(request.quality),
        grayscale=bool(request.grayscale),
        animated=info.is_animated,
        fallback=True,
    )


def encode_options(plan: EncodePlan, settings: CompressSettings = DEFAULT_SETTINGS) -> dict[str, Any]:
    """Encoder options handed to the codec for one attempt."""
    if plan.fallback:
        opts: dict[str, Any] = {"quality": plan.quality}
        if plan.animated:
            opts["loop"] = 0
        return opts

    opts = {
        "quality": plan.quality,
        "alpha_quality": settings.alpha_quality,
        "smart_subsample": settings.smart_subsample,
        "chroma_subsampling": settings.chroma_subsampling,
    }

    if plan.output_format == OutputFormat.AVIF and plan.avif is not None:
        opts["tile_rows"] = plan.avif.tile_rows
        opts["tile_cols"] = plan.avif.tile_cols
        opts["min_quantizer"] = plan.avif.min_quantizer
        opts["max_quantizer"] = plan.avif.max_quantizer
        opts["effort"] = plan.avif.effort

    if plan.animated:
        opts["loop"] = 0  # infinite

    return opts


def plan_to_dict(plan: EncodePlan) -> dict[str, Any]:
    data = asdict(plan)
    data["output_format"] = plan.output_format.value
    data["artifact_tier"] = plan.artifact_tier.value if plan.artifact_tier else None
    data["avif_tier"] = plan.avif_tier.value if plan.avif_tier else None
    data["resize_target"] = list(plan.resize_target) if plan.resize_target else None
    return data
