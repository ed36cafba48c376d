"""Embedding normalization.

Every adapter runs vectors through :func:`normalize_vector` before any
backend call. Whatever array-like value an embedding model produced
(numpy arrays, typed buffers, tuples, numpy scalars) comes out as a plain
list of finite Python floats, or a ``ValidationError`` is raised.
"""

import math
from collections.abc import Iterable, Mapping
from numbers import Real
from typing import Any

from forest_vectors.exceptions import ErrorCode, ValidationError


def normalize_vector(value: Any, expected_dimension: int | None = None) -> list[float]:
    """Coerce an embedding into a backend-safe list of floats.

    Args:
        value: Embedding output (list, tuple, numpy array, array.array, ...).
        expected_dimension: Required length, if known.

    Returns:
        Plain list of finite floats.

    Raises:
        ValidationError: If the value is empty, non-numeric, contains
            non-finite values, or has the wrong length.
    """
    if value is None:
        raise ValidationError("Embedding cannot be None")

    if isinstance(value, (str, bytes, bytearray, Mapping)):
        raise ValidationError(
            "Embedding must be a numeric array",
            details={"type": type(value).__name__},
        )

    if hasattr(value, "tolist"):
        value = value.tolist()

    if not isinstance(value, Iterable):
        raise ValidationError(
            "Embedding must be a numeric array",
            details={"type": type(value).__name__},
        )

    plain: list[float] = []
    for index, item in enumerate(value):
        if isinstance(item, bool) or not isinstance(item, Real):
            raise ValidationError(
                f"Invalid embedding value at index {index}: {item!r}",
                details={"index": index, "type": type(item).__name__},
            )
        number = float(item)
        if not math.isfinite(number):
            raise ValidationError(
                f"Invalid embedding value at index {index}: {number}",
                details={"index": index},
            )
        plain.append(number)

    if not plain:
        raise ValidationError("Embedding must be a non-empty array")

    if expected_dimension is not None and len(plain) != expected_dimension:
        raise ValidationError(
            f"Embedding has {len(plain)} dimensions, expected {expected_dimension}",
            code=ErrorCode.EMBEDDING_DIMENSION_MISMATCH,
            details={"actual": len(plain), "expected": expected_dimension},
        )

    return plain
