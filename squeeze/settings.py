from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from .models import (
    ArtifactParams,
    ArtifactTier,
    AvifParams,
    AvifTier,
    SharpenParams,
)


@dataclass(frozen=True)
class ArtifactRule:
    # Matches when pixel_count > above. above=None matches everything.
    above: Optional[int]
    tier: ArtifactTier
    params: ArtifactParams


@dataclass(frozen=True)
class AvifRule:
    # Matches when max(width, height) > above. above=None matches everything.
    above: Optional[int]
    tier: AvifTier
    params: AvifParams


ARTIFACT_RULES: tuple[ArtifactRule, ...] = (
    ArtifactRule(3_000_000, ArtifactTier.LARGE, ArtifactParams(0.40, 0.15, 0.80, 0.85)),
    ArtifactRule(1_000_000, ArtifactTier.MEDIUM, ArtifactParams(0.35, 0.12, 0.60, 0.90)),
    ArtifactRule(500_000, ArtifactTier.SMALL, ArtifactParams(0.30, 0.10, 0.50, 0.95)),
    ArtifactRule(None, ArtifactTier.NONE_BUT_SOFTEN, ArtifactParams(0.30, 0.10, 0.50, 1.00)),
)

AVIF_RULES: tuple[AvifRule, ...] = (
    AvifRule(2000, AvifTier.LARGE, AvifParams(4, 4, 30, 50, 3)),
    AvifRule(1000, AvifTier.MEDIUM, AvifParams(2, 2, 28, 48, 4)),
    AvifRule(None, AvifTier.SMALL, AvifParams(1, 1, 26, 48, 4)),
)


@dataclass(frozen=True)
class CompressSettings:
    """
    Every fixed constant the planner and the codec adapter rely on.

    One process-wide instance (DEFAULT_SETTINGS) is shared by all requests.
    Tests and presets build their own with dataclasses.replace().
    """

    # ----- Input limits -----
    # Largest decoded canvas we accept (0x3FFF * 0x3FFF).
    max_input_pixels: int = 268_402_689

    # ----- Container limits -----
    # AVIF/HEIF hard limit, per side.
    heif_max_dimension: int = 16384

    # ----- Tier tables (ordered, first match wins) -----
    artifact_rules: tuple[ArtifactRule, ...] = ARTIFACT_RULES
    avif_rules: tuple[AvifRule, ...] = AVIF_RULES

    # ----- Secondary sharpen pass -----
    sharpen: SharpenParams = SharpenParams(sigma=1.0, flat=1.0, jagged=0.5)
    secondary_sharpen_min_pixels: int = 500_000

    # ----- Encoder options shared by every format -----
    alpha_quality: int = 80
    chroma_subsampling: str = "4:2:0"
    smart_subsample: bool = True

    # ----- Error classification -----
    # Lower-case substrings of encoder errors that mean "container limit hit".
    capacity_error_markers: tuple[str, ...] = (
        "too large for the heif format",
        "too large for the avif format",
    )


DEFAULT_SETTINGS = CompressSettings()

_SCALAR_FIELDS = {
    "heif_max_dimension": int,
    "max_input_pixels": int,
    "secondary_sharpen_min_pixels": int,
    "alpha_quality": int,
    "chroma_subsampling": str,
    "smart_subsample": bool,
}


def settings_from_dict(data: Mapping[str, Any], base: CompressSettings = DEFAULT_SETTINGS) -> CompressSettings:
    """
    Apply scalar overrides on top of base.

    Tier tables are not loadable from plain data; build them in code.
    """
    known = {f.name for f in fields(CompressSettings)}
    overrides: dict[str, Any] = {}

    for key, value in data.items():
        if key == "capacity_error_markers":
            if isinstance(value, str) or not isinstance(value, (list, tuple)):
                raise ValueError("capacity_error_markers must be a list of strings")
            overrides[key] = tuple(str(v).lower() for v in value)
            continue
        if key not in _SCALAR_FIELDS:
            if key in known:
                raise ValueError(f"Setting cannot be overridden from config: {key}")
            raise ValueError(f"Unknown setting: {key}")
        overrides[key] = _SCALAR_FIELDS[key](value)

    if overrides.get("heif_max_dimension", base.heif_max_dimension) <= 0:
        raise ValueError("heif_max_dimension must be positive")
    if overrides.get("max_input_pixels", base.max_input_pixels) <= 0:
        raise ValueError("max_input_pixels must be positive")

    return replace(base, **overrides)


def load_settings(path: Path, base: CompressSettings = DEFAULT_SETTINGS) -> CompressSettings:
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Settings file must contain a JSON object: {path}")

    return settings_from_dict(data, base)


@dataclass(frozen=True)
class BatchSettings:
    """
    Knobs for compressing files on disk.

    Pure data, like CompressSettings, so the CLI can fill it in directly.
    """

    # ----- Output handling -----
    output_dir: Path
    overwrite: bool = False
    only_if_smaller: bool = True

    # Naming
    suffix: str = "_squeezed"  # e.g. photo.png -> photo_squeezed.avif

    # ----- Client hints -----
    modern_format: bool = True
    quality: int = 82
    grayscale: bool = False

    # ----- Failure handling -----
    # Copy the source bytes through when compression is unrecoverable.
    keep_original_on_failure: bool = False
