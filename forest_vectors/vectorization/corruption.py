"""Corruption signature detection.

A corruption signature is a known error-message fragment meaning the
vector backend is in an inconsistent state and needs a reset rather than
a retry. The fragments are configurable because each backend phrases the
same failure differently.
"""

from collections.abc import Iterable

from forest_vectors.config import DEFAULT_CORRUPTION_SIGNATURES
from forest_vectors.exceptions import CorruptionError, ValidationError

# Bound on how far the __cause__/__context__ chain is followed
_MAX_CHAIN = 8


def _messages(error: BaseException) -> Iterable[str]:
    seen: set[int] = set()
    current: BaseException | None = error
    for _ in range(_MAX_CHAIN):
        if current is None or id(current) in seen:
            return
        seen.add(id(current))
        message = str(getattr(current, "message", None) or current)
        if message:
            yield message
        current = current.__cause__ or current.__context__


def is_corruption_signature(
    error: BaseException | None,
    signatures: Iterable[str] = DEFAULT_CORRUPTION_SIGNATURES,
) -> bool:
    """Whether an error matches a known corruption signature.

    Never raises. ``None``, an error without a message, and any
    ``ValidationError`` are never corruption.

    Args:
        error: Exception to classify.
        signatures: Lowercase substrings to look for.

    Returns:
        True when the error (or an exception it was raised from) matches.
    """
    try:
        if error is None or isinstance(error, ValidationError):
            return False
        if isinstance(error, CorruptionError):
            return True
        needles = [s.lower() for s in signatures if s]
        for message in _messages(error):
            lowered = message.lower()
            if any(needle in lowered for needle in needles):
                return True
        return False
    except Exception:
        return False


class CorruptionDetector:
    """Callable corruption predicate bound to a signature list."""

    def __init__(self, signatures: Iterable[str] | None = None) -> None:
        if signatures is None:
            signatures = DEFAULT_CORRUPTION_SIGNATURES
        self._signatures = [s.lower() for s in signatures]

    @property
    def signatures(self) -> list[str]:
        return list(self._signatures)

    def __call__(self, error: BaseException | None) -> bool:
        return is_corruption_signature(error, self._signatures)
