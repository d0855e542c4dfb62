from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .codec import Codec, PillowCodec
from .errors import CapacityError, CompressionFailed
from .models import CompressionRequest, EncodeOutcome, EncodePlan, SourceImageInfo
from .planner import build_fallback_plan, build_plan, encode_options
from .settings import DEFAULT_SETTINGS, CompressSettings


logger = logging.getLogger(__name__)


class State(str, Enum):
    PLANNING = "planning"
    ENCODING = "encoding"
    FALLBACK_PLANNING = "fallback_planning"
    FALLBACK_ENCODING = "fallback_encoding"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class CompressionResult:
    outcome: EncodeOutcome
    plan: EncodePlan
    attempts: int

    @property
    def used_fallback(self) -> bool:
        return self.plan.fallback


class CompressionOrchestrator:
    """
    Plans, encodes and, on a capacity error, retries once with a simpler plan.

    At most two encode attempts happen per call. Anything that cannot be
    recovered surfaces as CompressionFailed, which tells the caller to serve
    the original image instead.
    """

    def __init__(self, codec: Optional[Codec] = None, settings: CompressSettings = DEFAULT_SETTINGS) -> None:
        self.settings = settings
        self.codec = codec if codec is not None else PillowCodec(settings.capacity_error_markers, settings.max_input_pixels)

    def plan(self, data: bytes, request: CompressionRequest) -> tuple[SourceImageInfo, EncodePlan]:
        info = self.codec.decode_metadata(data)
        return info, build_plan(info, request, self.settings)

    def compress(self, data: bytes, request: CompressionRequest) -> CompressionResult:
        state = State.PLANNING
        info: Optional[SourceImageInfo] = None
        plan: Optional[EncodePlan] = None
        outcome: Optional[EncodeOutcome] = None
        error: Optional[Exception] = None
        attempts = 0

        while state not in (State.DONE, State.FAILED):
            try:
                if state == State.PLANNING:
                    info, plan = self.plan(data, request)
                    logger.debug(
                        "Planned %s for %dx%d (%d frame(s)): resize=%s artifact=%s avif=%s sharpen=%s",
                        plan.output_format.value, info.width, info.height, info.frame_count,
                        plan.resize_target, plan.artifact_tier, plan.avif_tier, plan.applied_sharpen,
                    )
                    state = State.ENCODING

                elif state in (State.ENCODING, State.FALLBACK_ENCODING):
                    attempts += 1
                    outcome = self.codec.encode(data, plan, encode_options(plan, self.settings))
                    state = State.DONE

                elif state == State.FALLBACK_PLANNING:
                    plan = build_fallback_plan(info, request)
                    state = State.FALLBACK_ENCODING

            except CapacityError as exc:
                if state == State.ENCODING:
                    logger.warning(
                        "Image too large for %s (%s), falling back to %s",
                        plan.output_format.value, exc,
                        "webp" if info.is_animated else "jpeg",
                    )
                    state = State.FALLBACK_PLANNING
                else:
                    error, state = exc, State.FAILED
            except Exception as exc:
                error, state = exc, State.FAILED

        if state == State.FAILED:
            logger.error("Compression failed after %d attempt(s): %s", attempts, error)
            raise CompressionFailed(f"Compression failed: {error}", attempts=attempts) from error

        return CompressionResult(outcome=outcome, plan=plan, attempts=attempts)


def compress(
    data: bytes,
    request: CompressionRequest,
    codec: Optional[Codec] = None,
    settings: CompressSettings = DEFAULT_SETTINGS,
) -> CompressionResult:
    return CompressionOrchestrator(codec, settings).compress(data, request)
