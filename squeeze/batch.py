from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

from .compress import CompressionOrchestrator
from .engine import SUPPORTED_EXTS, process_file
from .results import ProcessResult
from .settings import BatchSettings


@dataclass(frozen=True)
class BatchSummary:
    total_files: int
    processed: int
    skipped: int
    failed: int
    fallbacks: int
    total_src_bytes: int
    total_out_bytes: int

    @classmethod
    def from_results(cls, results: Sequence[ProcessResult]) -> "BatchSummary":
        processed = sum(1 for r in results if r.changed)
        return cls(
            total_files=len(results),
            processed=processed,
            skipped=len(results) - processed,
            failed=sum(1 for r in results if r.skipped_reason == "compression_failed"),
            fallbacks=sum(1 for r in results if r.used_fallback),
            total_src_bytes=sum(r.src_bytes for r in results),
            total_out_bytes=sum(r.out_bytes for r in results),
        )

    @property
    def saved_bytes(self) -> int:
        return max(0, self.total_src_bytes - self.total_out_bytes)

    @property
    def saved_percent(self) -> float:
        if self.total_src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.total_src_bytes) * 100.0


def _is_image(path: Path, excluded: Optional[Path]) -> bool:
    if not path.is_file() or path.suffix.lower() not in SUPPORTED_EXTS:
        return False
    # Outputs written next to the inputs must not be fed back in.
    return excluded is None or not path.resolve().is_relative_to(excluded)


def iter_images(
    paths: Sequence[Path],
    recursive: bool = True,
    exclude_dir: Optional[Path] = None,
) -> Iterator[Path]:
    """Expand files and folders into the image files to compress, in sorted order per folder."""
    excluded = exclude_dir.resolve() if exclude_dir else None

    for p in map(Path, paths):
        if p.is_dir():
            candidates = sorted(p.rglob("*") if recursive else p.iterdir())
        else:
            candidates = [p]
        yield from (c for c in candidates if _is_image(c, excluded))


def process_batch(
    inputs: Sequence[Path],
    settings: BatchSettings,
    recursive: bool = True,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    cancel_event: Optional[threading.Event] = None,
    orchestrator: Optional[CompressionOrchestrator] = None,
) -> tuple[List[ProcessResult], BatchSummary]:
    """
    Compress every image under inputs with one shared orchestrator.

    A set cancel_event stops before the next file; files already written stay.
    """
    orchestrator = orchestrator or CompressionOrchestrator()
    queue = list(iter_images(inputs, recursive=recursive, exclude_dir=settings.output_dir))

    results: List[ProcessResult] = []
    for idx, img_path in enumerate(queue, start=1):
        if cancel_event is not None and cancel_event.is_set():
            break
        if progress_callback is not None:
            progress_callback(idx, len(queue))
        results.append(process_file(img_path, settings, orchestrator))

    return results, BatchSummary.from_results(results)
