"""Input compatibility layer for optional Polars support.

All public API functions accept pandas DataFrames.  This module adds
transparent support for Polars DataFrames: when a user passes a
``polars.DataFrame`` (or ``polars.LazyFrame``) as the Observation Set
it is converted to ``pandas.DataFrame`` at the boundary, so the design
matrix builder only ever sees pandas columns.

Polars is **not** a required dependency.  If it is not installed, the
converter simply passes pandas objects through untouched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

# Runtime detection; Polars stays an optional dependency.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "input") -> pd.DataFrame:
    """Convert *obj* to a :class:`pandas.DataFrame` if necessary.

    Accepted types:
        * ``pandas.DataFrame`` — returned as-is.
        * ``polars.DataFrame`` — converted via ``.to_pandas()``.
        * ``polars.LazyFrame`` — collected then converted.

    Args:
        obj: A pandas or Polars DataFrame (or LazyFrame).
        name: Label used in error messages (e.g. ``"data"``).

    Returns:
        A pandas ``DataFrame``.

    Raises:
        TypeError: If *obj* is not a recognised DataFrame type.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    raise TypeError(
        f"'{name}' must be a pandas DataFrame"
        + (" or Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def _as_outcome_array(y: object, *, name: str = "y") -> np.ndarray:
    """Flatten an outcome given as array, Series or one-column frame."""
    is_polars = _HAS_POLARS and isinstance(y, (pl.DataFrame, pl.LazyFrame))
    if isinstance(y, pd.DataFrame) or is_polars:
        frame = _ensure_pandas_df(y, name=name)  # type: ignore[arg-type]
        if frame.shape[1] != 1:
            raise ValueError(
                f"'{name}' must have exactly one column, got {frame.shape[1]}."
            )
        return np.asarray(frame.iloc[:, 0], dtype=float)
    return np.ravel(np.asarray(y, dtype=float))
