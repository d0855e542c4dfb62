from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OutputFormat(str, Enum):
    JPEG = "jpeg"
    AVIF = "avif"
    WEBP = "webp"


class ArtifactTier(str, Enum):
    NONE_BUT_SOFTEN = "none_but_soften"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class AvifTier(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(frozen=True)
class ArtifactParams:
    """Pre-encode filter strengths for one artifact-reduction tier."""
    blur_radius: float
    denoise_strength: float
    sharpen_sigma: float
    saturation_factor: float  # 1.0 leaves chroma untouched


@dataclass(frozen=True)
class AvifParams:
    tile_rows: int
    tile_cols: int
    min_quantizer: int
    max_quantizer: int
    effort: int


@dataclass(frozen=True)
class SharpenParams:
    """Edge-aware sharpen: sigma of the mask, gain on flat and jagged areas."""
    sigma: float
    flat: float
    jagged: float


@dataclass(frozen=True)
class SourceImageInfo:
    """
    What we know about the decoded input before planning.

    Produced once per request by the codec's metadata decode.
    """
    width: int
    height: int
    frame_count: int = 1

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"image dimensions must be positive, got {self.width}x{self.height}")
        if self.frame_count < 1:
            raise ValueError(f"frame_count must be >= 1, got {self.frame_count}")

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def is_animated(self) -> bool:
        return self.frame_count > 1


@dataclass(frozen=True)
class CompressionRequest:
    """
    Client hints for one re-encode.

    modern_format means the client accepts AVIF. source_url is only used to
    name the result.
    """
    modern_format: bool = False
    quality: int = 82
    grayscale: bool = False
    origin_size: Optional[int] = None
    source_url: str = ""

    def __post_init__(self) -> None:
        if not 1 <= int(self.quality) <= 100:
            raise ValueError(f"quality must be in 1..100, got {self.quality}")
        if self.origin_size is not None and self.origin_size < 0:
            raise ValueError(f"origin_size must be non-negative, got {self.origin_size}")


@dataclass(frozen=True)
class EncodePlan:
    """
    Everything the codec needs to run one encode attempt.

    Plans are never edited after they are built. The capacity fallback builds
    a new, simpler plan instead.
    """
    output_format: OutputFormat
    quality: int
    grayscale: bool = False
    animated: bool = False
    resize_target: Optional[tuple[int, int]] = None  # bounding box, fit inside
    artifact_tier: Optional[ArtifactTier] = None
    artifact: Optional[ArtifactParams] = None
    avif_tier: Optional[AvifTier] = None
    avif: Optional[AvifParams] = None
    applied_sharpen: bool = False
    sharpen: Optional[SharpenParams] = None
    fallback: bool = False


@dataclass(frozen=True)
class EncodeOutcome:
    data: bytes
    actual_format: OutputFormat
    encoded_size: int

    @property
    def extension(self) -> str:
        return self.actual_format.value
