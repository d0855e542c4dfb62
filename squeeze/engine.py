from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .compress import CompressionOrchestrator
from .errors import CompressionFailed
from .models import CompressionRequest
from .response import build_response
from .results import ProcessResult
from .settings import BatchSettings


logger = logging.getLogger(__name__)

SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".avif", ".tif", ".tiff", ".bmp"}

FORMAT_TO_EXT = {
    "jpeg": ".jpg",
    "webp": ".webp",
    "avif": ".avif",
}


def process_file(
    src_path: Path,
    s: BatchSettings,
    orchestrator: Optional[CompressionOrchestrator] = None,
) -> ProcessResult:
    src_path = Path(src_path)
    orchestrator = orchestrator or CompressionOrchestrator()

    src_bytes = _file_size(src_path)

    if src_path.suffix.lower() not in SUPPORTED_EXTS:
        return _skipped(src_path, src_bytes, "unsupported_extension")

    # Ensure output directory exists
    s.output_dir.mkdir(parents=True, exist_ok=True)

    data = src_path.read_bytes()
    request = CompressionRequest(
        modern_format=s.modern_format,
        quality=s.quality,
        grayscale=s.grayscale,
        origin_size=src_bytes,
        source_url=src_path.resolve().as_uri(),
    )

    try:
        result = orchestrator.compress(data, request)
    except CompressionFailed as exc:
        logger.warning("Could not compress %s: %s", src_path, exc)
        if s.keep_original_on_failure:
            out_path = _pick_output_path(_build_output_path(src_path, s, src_path.suffix.lower()), s)
            _write_atomic(data, out_path, s)
            return ProcessResult(
                src_path=src_path,
                out_path=out_path,
                src_bytes=src_bytes,
                out_bytes=src_bytes,
                changed=False,
                attempts=exc.attempts,
                skipped_reason="compression_failed",
            )
        return _skipped(src_path, src_bytes, "compression_failed", attempts=exc.attempts)

    outcome = result.outcome
    meta = build_response(outcome, request.source_url, request.origin_size)

    if s.only_if_smaller and outcome.encoded_size >= src_bytes:
        # Not smaller -> nothing written
        return _skipped(src_path, src_bytes, "not_smaller", attempts=result.attempts)

    out_path = _pick_output_path(_build_output_path(src_path, s, FORMAT_TO_EXT[outcome.extension]), s)
    _write_atomic(outcome.data, out_path, s)

    logger.info("%s -> %s (%s, saved %d bytes)", src_path, out_path, meta.content_type, meta.bytes_saved)

    return ProcessResult(
        src_path=src_path,
        out_path=out_path,
        src_bytes=src_bytes,
        out_bytes=_file_size(out_path),
        changed=True,
        out_format=outcome.extension,
        used_fallback=result.used_fallback,
        attempts=result.attempts,
        skipped_reason=None,
    )


def _skipped(src_path: Path, src_bytes: int, reason: str, attempts: int = 0) -> ProcessResult:
    return ProcessResult(
        src_path=src_path,
        out_path=None,
        src_bytes=src_bytes,
        out_bytes=src_bytes,
        changed=False,
        attempts=attempts,
        skipped_reason=reason,
    )


def _build_output_path(src_path: Path, s: BatchSettings, ext: str) -> Path:
    stem = src_path.stem + s.suffix
    return s.output_dir / f"{stem}{ext}"


def _pick_output_path(path: Path, s: BatchSettings) -> Path:
    if path.exists() and not s.overwrite:
        return _next_available_name(path)
    return path


def _next_available_name(path: Path) -> Path:
    # photo_squeezed.avif -> photo_squeezed (1).avif
    base = path.with_suffix("")
    ext = path.suffix
    i = 1
    while True:
        candidate = Path(f"{base} ({i}){ext}")
        if not candidate.exists():
            return candidate
        i += 1


def _write_atomic(data: bytes, out_path: Path, s: BatchSettings) -> None:
    # Temp file in the output dir so the final rename is cheap
    fd, tmp_name = tempfile.mkstemp(prefix="squeeze_", suffix=out_path.suffix, dir=str(s.output_dir))
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    tmp_path = Path(tmp_name)

    if s.overwrite and out_path.exists():
        out_path.unlink()
    tmp_path.replace(out_path)


def _file_size(p: Path) -> int:
    try:
        return p.stat().st_size
    except FileNotFoundError:
        return 0
