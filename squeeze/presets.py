from __future__ import annotations

from dataclasses import replace

from .settings import CompressSettings

PRESET_NAMES = ("default", "low-memory", "archive")


def apply_preset(name: str, base: CompressSettings) -> CompressSettings:
    name = name.lower()

    if name == "default":
        return base

    if name == "low-memory":
        # Smaller AVIF canvas; bigger images go through the resize clamp.
        return replace(base, heif_max_dimension=8192)

    if name == "archive":
        return replace(base, alpha_quality=100, chroma_subsampling="4:4:4")

    raise ValueError(f"Unknown preset: {name}")
