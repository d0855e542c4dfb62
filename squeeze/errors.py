from __future__ import annotations


class SqueezeError(Exception):
    """Base class for everything this package raises on purpose."""


class DecodeError(SqueezeError):
    """Input bytes are corrupt or in a format the codec cannot read."""


class EncodeError(SqueezeError):
    """Codec failure that retrying will not fix."""


class CapacityError(EncodeError):
    """The target container rejected the image as too large."""


class CompressionFailed(SqueezeError):
    """
    Compression is unrecoverable; the caller should serve the original.

    The triggering error is chained as __cause__.
    """

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts
