from __future__ import annotations

import io
import logging
import math
from typing import Any, Mapping, Optional, Protocol

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, ImageSequence, UnidentifiedImageError, features

from .errors import CapacityError, DecodeError, EncodeError
from .models import ArtifactParams, EncodeOutcome, EncodePlan, OutputFormat, SharpenParams, SourceImageInfo
from .planner import fit_inside
from .settings import DEFAULT_SETTINGS


logger = logging.getLogger(__name__)

# EXIF orientations that swap width and height once applied.
_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}
_EXIF_ORIENTATION = 0x0112

# Pillow only reads the header on open; the per-codec max_input_pixels check
# below replaces its global decompression-bomb guard.
Image.MAX_IMAGE_PIXELS = None

FORMAT_TO_PIL = {
    OutputFormat.JPEG: "JPEG",
    OutputFormat.WEBP: "WEBP",
    OutputFormat.AVIF: "AVIF",
}


class Codec(Protocol):
    def decode_metadata(self, data: bytes) -> SourceImageInfo: ...

    def encode(self, data: bytes, plan: EncodePlan, options: Mapping[str, Any]) -> EncodeOutcome: ...


class PillowCodec:
    """
    Codec backed by Pillow.

    Filters run in a fixed order: grayscale, saturation, blur, denoise,
    tier sharpen, secondary sharpen, resize. Encoder exceptions are sorted
    into CapacityError (message matches a capacity marker) and EncodeError.
    """

    def __init__(
        self,
        capacity_error_markers: tuple[str, ...] = DEFAULT_SETTINGS.capacity_error_markers,
        max_input_pixels: int = DEFAULT_SETTINGS.max_input_pixels,
    ) -> None:
        self.capacity_error_markers = tuple(m.lower() for m in capacity_error_markers)
        self.max_input_pixels = max_input_pixels

    def _check_size(self, width: int, height: int) -> None:
        if width * height > self.max_input_pixels:
            raise DecodeError(
                f"Image size ({width * height} pixels) exceeds limit of {self.max_input_pixels} pixels"
            )

    def decode_metadata(self, data: bytes) -> SourceImageInfo:
        try:
            with Image.open(io.BytesIO(data)) as im:
                width, height = im.size
                frame_count = getattr(im, "n_frames", 1)
                orientation = _read_orientation(im)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as exc:
            raise DecodeError(f"Cannot read image: {exc}") from exc

        self._check_size(width, height)

        if orientation in _TRANSPOSED_ORIENTATIONS:
            width, height = height, width

        try:
            return SourceImageInfo(width=width, height=height, frame_count=frame_count)
        except ValueError as exc:
            raise DecodeError(str(exc)) from exc

    def encode(self, data: bytes, plan: EncodePlan, options: Mapping[str, Any]) -> EncodeOutcome:
        try:
            src = Image.open(io.BytesIO(data))
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise DecodeError(f"Cannot read image: {exc}") from exc

        with src:
            self._check_size(*src.size)
            if plan.animated:
                frames = [self._prepare_frame(f.copy(), plan) for f in ImageSequence.Iterator(src)]
                durations = [f.info.get("duration", 100) for f in ImageSequence.Iterator(src)]
            else:
                src.load()
                frames = [self._apply_pipeline(ImageOps.exif_transpose(src), plan)]
                durations = []

        buf = io.BytesIO()
        pil_format = FORMAT_TO_PIL[plan.output_format]
        save_kwargs = _build_save_kwargs(plan, options)

        first, rest = _convert_for_format(frames[0], plan.output_format), frames[1:]
        if first.mode == "L":
            # Single-channel output has no chroma to subsample.
            save_kwargs.pop("subsampling", None)
        if rest:
            save_kwargs["save_all"] = True
            save_kwargs["append_images"] = [_convert_for_format(f, plan.output_format) for f in rest]
            save_kwargs["duration"] = durations

        if plan.output_format == OutputFormat.AVIF and not features.check("avif"):
            raise EncodeError("This Pillow build has no AVIF encoder")

        try:
            first.save(buf, format=pil_format, **save_kwargs)
        except Exception as exc:
            message = str(exc)
            if any(marker in message.lower() for marker in self.capacity_error_markers):
                raise CapacityError(message) from exc
            raise EncodeError(f"{pil_format} encode failed: {message}") from exc

        out = buf.getvalue()
        logger.debug("Encoded %s: %d bytes, %d frame(s)", plan.output_format.value, len(out), len(frames))
        return EncodeOutcome(data=out, actual_format=plan.output_format, encoded_size=len(out))

    def _prepare_frame(self, frame: Image.Image, plan: EncodePlan) -> Image.Image:
        # Animated frames only get grayscale; no filters, no resize.
        frame = _normalize_mode(frame)
        if plan.grayscale:
            frame = _to_grayscale(frame)
        return frame

    def _apply_pipeline(self, im: Image.Image, plan: EncodePlan) -> Image.Image:
        im = _normalize_mode(im)

        if plan.grayscale:
            im = _to_grayscale(im)

        if plan.artifact is not None:
            im = _reduce_artifacts(im, plan.artifact)

        if plan.applied_sharpen and plan.sharpen is not None:
            im = _sharpen(im, plan.sharpen)

        if plan.resize_target is not None:
            new_size = fit_inside(im.width, im.height, *plan.resize_target)
            if new_size != im.size:
                im = im.resize(new_size, Image.Resampling.LANCZOS)

        return im


def _build_save_kwargs(plan: EncodePlan, options: Mapping[str, Any]) -> dict:
    kwargs: dict = {"quality": int(options.get("quality", plan.quality))}

    if plan.output_format == OutputFormat.JPEG:
        if "chroma_subsampling" in options:
            kwargs["subsampling"] = options["chroma_subsampling"]

    elif plan.output_format == OutputFormat.WEBP:
        if "alpha_quality" in options:
            kwargs["alpha_quality"] = int(options["alpha_quality"])
        if "loop" in options:
            kwargs["loop"] = int(options["loop"])

    elif plan.output_format == OutputFormat.AVIF:
        if "chroma_subsampling" in options:
            kwargs["subsampling"] = options["chroma_subsampling"]
        # Pillow takes tile counts as log2.
        if "tile_rows" in options:
            kwargs["tile_rows"] = _log2(options["tile_rows"])
        if "tile_cols" in options:
            kwargs["tile_cols"] = _log2(options["tile_cols"])
        # libavif speed runs the other way from effort.
        if "effort" in options:
            kwargs["speed"] = max(0, min(10, 9 - int(options["effort"])))
        # min_quantizer / max_quantizer have no Pillow equivalent.

    return kwargs


def _read_orientation(im: Image.Image) -> Optional[int]:
    # Raw EXIF from the header; getexif() would decode every PNG pixel.
    raw = im.info.get("exif")
    if not raw:
        return None
    exif = Image.Exif()
    exif.load(raw)
    return exif.get(_EXIF_ORIENTATION)


def _log2(count: int) -> int:
    return max(0, int(math.log2(max(1, int(count)))))


def _has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA"):
        return True
    if im.mode == "P" and "transparency" in im.info:
        return True
    return False


def _normalize_mode(im: Image.Image) -> Image.Image:
    if im.mode in ("RGB", "RGBA", "L"):
        return im
    return im.convert("RGBA" if _has_alpha(im) else "RGB")


def _to_grayscale(im: Image.Image) -> Image.Image:
    if im.mode == "L":
        return im
    gray = im.convert("L")
    if im.mode == "RGBA":
        return Image.merge("RGBA", (gray, gray, gray, im.getchannel("A")))
    return gray


def _reduce_artifacts(im: Image.Image, params: ArtifactParams) -> Image.Image:
    if params.saturation_factor != 1.0 and im.mode != "L":
        im = ImageEnhance.Color(im).enhance(params.saturation_factor)

    if params.blur_radius > 0:
        im = im.filter(ImageFilter.GaussianBlur(params.blur_radius))

    if params.denoise_strength > 0:
        im = Image.blend(im, im.filter(ImageFilter.MedianFilter(3)), params.denoise_strength)

    if params.sharpen_sigma > 0:
        im = im.filter(ImageFilter.UnsharpMask(radius=params.sharpen_sigma, percent=100, threshold=0))

    return im


def _sharpen(im: Image.Image, params: SharpenParams) -> Image.Image:
    """Unsharp mask with separate gain on flat areas and on edges."""
    flat = im.filter(ImageFilter.UnsharpMask(radius=params.sigma, percent=round(params.flat * 100), threshold=0))
    if params.jagged == params.flat:
        return flat
    jagged = im.filter(ImageFilter.UnsharpMask(radius=params.sigma, percent=round(params.jagged * 100), threshold=0))
    edges = im.convert("L").filter(ImageFilter.FIND_EDGES)
    return Image.composite(jagged, flat, edges)


def _flatten_alpha(im: Image.Image, background_rgb: tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    rgba = im.convert("RGBA")
    bg = Image.new("RGBA", rgba.size, background_rgb + (255,))
    comp = Image.alpha_composite(bg, rgba)
    return comp.convert("RGB")


def _convert_for_format(im: Image.Image, out_format: OutputFormat) -> Image.Image:
    if out_format == OutputFormat.JPEG:
        if _has_alpha(im):
            return _flatten_alpha(im)
        if im.mode not in ("RGB", "L"):
            return im.convert("RGB")
        return im

    if out_format == OutputFormat.AVIF and im.mode not in ("RGB", "RGBA"):
        return im.convert("RGBA" if _has_alpha(im) else "RGB")

    return im
