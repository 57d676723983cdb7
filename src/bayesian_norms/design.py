"""Design matrix construction from raw covariate records.

Turns an Observation Set (one row per person, one column per raw
covariate) into the numeric matrix every later stage consumes.  The
column order is fixed:

    Intercept | main effects (input order) | pairwise interactions

Interactions are generated in lexicographic order of the main-effect
*positions*: ``(0, 1), (0, 2), …, (1, 2), …``.  Each interaction
column is the row-wise product of its two transformed main effects,
so the heredity invariant (every interaction's constituents are
present as separate columns) holds by construction.

Transforms
~~~~~~~~~~
Each raw covariate passes through one :class:`CovariateTransform`:

=================  ==============================================
``"identity"``     value as given
``"center"``       value − centre (centre learned as the sample
                   mean unless fixed by the caller)
``"log"``          natural logarithm; values ≤ 0 are rejected
``"log_center"``   logarithm, then centring on the log scale
``"indicator"``    1.0 when value == ``level``, else 0.0
=================  ==============================================

Centring constants are learned once, at build time, and stored on the
returned :class:`DesignMatrix`.  :meth:`DesignMatrix.expand` re-uses
them when a new individual is scored, so a scoring request lands in
exactly the term space the model was fitted in.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df
from .exceptions import CovariateMismatchError, InvalidCovariateError

logger = logging.getLogger(__name__)

INTERCEPT = "Intercept"
"""Column name of the intercept term."""

_TRANSFORM_KINDS = ("identity", "center", "log", "log_center", "indicator")


# ------------------------------------------------------------------ #
# Covariate transforms
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class CovariateTransform:
    """How one raw covariate becomes one main-effect column.

    Attributes:
        name: Raw covariate (column) name in the Observation Set.
        kind: One of ``"identity"``, ``"center"``, ``"log"``,
            ``"log_center"``, ``"indicator"``.
        center: Centring constant for ``"center"`` / ``"log_center"``.
            ``None`` means "learn the sample mean at build time".
        level: Category coded as 1.0 by ``"indicator"``.
        label: Optional term name; defaults to :attr:`term_name`.
    """

    name: str
    kind: str = "identity"
    center: float | None = None
    level: Any = None
    label: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in _TRANSFORM_KINDS:
            raise ValueError(
                f"Unknown transform kind {self.kind!r} for covariate "
                f"'{self.name}'. Choose from: {list(_TRANSFORM_KINDS)}"
            )
        if self.kind == "indicator" and self.level is None:
            raise ValueError(
                f"Indicator transform for '{self.name}' requires a 'level'."
            )

    @property
    def term_name(self) -> str:
        """Name of the design-matrix column this transform produces."""
        if self.label is not None:
            return self.label
        if self.kind in ("log", "log_center"):
            return f"log({self.name})"
        if self.kind == "indicator":
            return f"{self.name}[{self.level}]"
        return self.name

    @property
    def is_fitted(self) -> bool:
        """Whether every constant the transform needs is known."""
        return self.kind not in ("center", "log_center") or self.center is not None

    def _raw_to_float(self, values: Any) -> np.ndarray:
        if self.kind == "indicator":
            raw = np.asarray(values, dtype=object).ravel()
            missing = pd.isna(pd.Series(raw, dtype=object)).to_numpy()
            if missing.any():
                raise InvalidCovariateError(
                    self.name,
                    f"{int(missing.sum())} missing value(s) "
                    f"(first at position {int(np.argmax(missing))}).",
                )
            return (raw == self.level).astype(float)
        numeric = pd.to_numeric(pd.Series(np.ravel(values), dtype=object), errors="coerce")
        bad = numeric.isna().to_numpy()
        if bad.any():
            first = int(np.argmax(bad))
            raise InvalidCovariateError(
                self.name,
                f"{int(bad.sum())} missing or non-numeric value(s) "
                f"(first at position {first}).",
            )
        return numeric.to_numpy(dtype=float)

    def _pre_center(self, values: Any) -> np.ndarray:
        x = self._raw_to_float(values)
        if self.kind in ("log", "log_center"):
            nonpositive = x <= 0
            if nonpositive.any():
                first = int(np.argmax(nonpositive))
                raise InvalidCovariateError(
                    self.name,
                    f"logarithm requested but {int(nonpositive.sum())} value(s) "
                    f"are <= 0 (first: {x[first]!r} at position {first}).",
                )
            x = np.log(x)
        if not np.all(np.isfinite(x)):
            first = int(np.argmax(~np.isfinite(x)))
            raise InvalidCovariateError(
                self.name,
                f"non-finite value after '{self.kind}' transform "
                f"at position {first}.",
            )
        return x

    def fit(self, values: Any) -> CovariateTransform:
        """Return a copy with any learnable centre set from *values*."""
        if self.is_fitted:
            return self
        x = self._pre_center(values)
        return replace(self, center=float(np.mean(x)))

    def apply(self, values: Any) -> np.ndarray:
        """Transform raw *values* into the main-effect column.

        Raises:
            InvalidCovariateError: If any value is missing,
                non-numeric, or non-finite after the transform.
            ValueError: If the transform still needs a centre.
        """
        if not self.is_fitted:
            raise ValueError(
                f"Transform for '{self.name}' has not been fitted; "
                f"call fit() or pass an explicit center."
            )
        x = self._pre_center(values)
        if self.kind in ("center", "log_center"):
            x = x - self.center
        return x


def _coerce_transform(spec: str | CovariateTransform) -> CovariateTransform:
    if isinstance(spec, CovariateTransform):
        return spec
    if isinstance(spec, str):
        return CovariateTransform(spec)
    raise TypeError(
        f"Covariates must be names or CovariateTransform objects, "
        f"got {type(spec).__name__}."
    )


# ------------------------------------------------------------------ #
# Terms
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class Term:
    """One design-matrix column.

    Attributes:
        name: Column name (``"Intercept"``, ``"age"``, ``"age:sex[M]"``).
        kind: ``"intercept"``, ``"main"`` or ``"interaction"``.
        constituents: Main-effect term names an interaction is built
            from; the term's own name for a main effect; empty for the
            intercept.
    """

    name: str
    kind: str
    constituents: tuple[str, ...] = ()


def interaction_constituents(name: str) -> tuple[str, ...]:
    """Split an interaction name (``"a:b"``) into its constituents."""
    return tuple(name.split(":")) if ":" in name else ()


# ------------------------------------------------------------------ #
# DesignMatrix
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class DesignMatrix:
    """Immutable numeric design matrix with its term definitions.

    Attributes:
        values: Read-only array of shape ``(n_observations, n_terms)``.
        terms: One :class:`Term` per column, in column order.
        covariates: Fitted transforms, one per main effect, in
            main-effect order.  Used by :meth:`expand`.
        interaction_order: 1 (main effects only) or 2 (pairwise).
    """

    values: np.ndarray
    terms: tuple[Term, ...]
    covariates: tuple[CovariateTransform, ...] = field(default=())
    interaction_order: int = 2

    def __post_init__(self) -> None:
        if np.ndim(self.values) != 2 or np.shape(self.values)[1] != len(self.terms):
            raise ValueError(
                f"DesignMatrix values of shape {np.shape(self.values)} do not "
                f"match {len(self.terms)} term(s)."
            )
        names = [t.name for t in self.terms]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate term names in design matrix: {names}")
        present = set(names)
        for term in self.terms:
            missing = [c for c in term.constituents if c not in present]
            if term.kind == "interaction" and missing:
                raise ValueError(
                    f"Interaction '{term.name}' requires main effect(s) "
                    f"{missing} to be present as columns."
                )
        values = np.array(self.values, dtype=float)
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    # ---- Shape & names --------------------------------------------

    @property
    def term_names(self) -> list[str]:
        return [t.name for t in self.terms]

    @property
    def candidate_terms(self) -> list[str]:
        """Every term eligible for selection (intercept excluded)."""
        return [t.name for t in self.terms if t.kind != "intercept"]

    @property
    def has_intercept(self) -> bool:
        return any(t.kind == "intercept" for t in self.terms)

    @property
    def n_observations(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_terms(self) -> int:
        return int(self.values.shape[1])

    def term(self, name: str) -> Term:
        for t in self.terms:
            if t.name == name:
                return t
        raise KeyError(name)

    def column_index(self, names: Iterable[str]) -> list[int]:
        """Column positions of *names*, in the order given.

        Raises:
            KeyError: If a name is not a column of this design.
        """
        lookup = {t.name: i for i, t in enumerate(self.terms)}
        idx = []
        for name in names:
            if name not in lookup:
                raise KeyError(f"Term '{name}' is not a column of the design matrix.")
            idx.append(lookup[name])
        return idx

    def subset(self, names: Iterable[str]) -> np.ndarray:
        """Columns for *names* as a ``(n, len(names))`` array."""
        return self.values[:, self.column_index(names)]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, columns=self.term_names)

    # ---- Scoring-time expansion -----------------------------------

    def required_covariates(self, names: Iterable[str] | None = None) -> list[str]:
        """Raw covariates needed to evaluate the terms in *names*."""
        wanted = set(self.term_names if names is None else names)
        needed: set[str] = set()
        for t in self.terms:
            if t.name in wanted:
                needed.update(t.constituents)
        return [c.name for c in self.covariates if c.term_name in needed]

    def expand(
        self,
        record: Mapping[str, Any] | pd.Series,
        names: Sequence[str] | None = None,
    ) -> np.ndarray:
        """Map one individual's raw covariates into the fitted term space.

        The same transforms and centring constants used at build time
        are applied, then the requested interaction products formed.

        Args:
            record: Raw covariate name → value.
            names: Terms to return, in order (default: every column).

        Returns:
            1-D array with one value per requested term.

        Raises:
            CovariateMismatchError: If *record* omits a covariate that
                one of the requested terms depends on.
            InvalidCovariateError: If a supplied value is non-numeric
                or non-finite after its transform.
        """
        names = self.term_names if names is None else list(names)
        self.column_index(names)  # validate
        required = self.required_covariates(names)
        missing = [c for c in required if c not in record]
        if missing:
            raise CovariateMismatchError(missing)

        main: dict[str, float] = {}
        for transform in self.covariates:
            if transform.name in required:
                main[transform.term_name] = float(
                    transform.apply([record[transform.name]])[0]
                )

        row = np.empty(len(names), dtype=float)
        for i, name in enumerate(names):
            term = self.term(name)
            if term.kind == "intercept":
                row[i] = 1.0
            else:
                row[i] = float(np.prod([main[c] for c in term.constituents]))
        return row

    def expand_frame(
        self,
        data: DataFrameLike,
        names: Sequence[str] | None = None,
    ) -> np.ndarray:
        """Vectorised :meth:`expand` for several individuals at once."""
        frame = _ensure_pandas_df(data, name="data")
        names = self.term_names if names is None else list(names)
        self.column_index(names)
        required = self.required_covariates(names)
        missing = [c for c in required if c not in frame.columns]
        if missing:
            raise CovariateMismatchError(missing)
        main = {
            t.term_name: t.apply(frame[t.name].to_numpy())
            for t in self.covariates
            if t.name in required
        }
        out = np.empty((len(frame), len(names)), dtype=float)
        for i, name in enumerate(names):
            term = self.term(name)
            if term.kind == "intercept":
                out[:, i] = 1.0
            else:
                out[:, i] = np.prod([main[c] for c in term.constituents], axis=0)
        return out

    # ---- Construction from a plain array --------------------------

    @classmethod
    def from_array(
        cls,
        X: np.ndarray,
        names: Sequence[str],
    ) -> DesignMatrix:
        """Wrap an already-numeric matrix.

        A column called ``"Intercept"`` is treated as the intercept;
        names containing ``":"`` are interactions of the main effects
        they join; every other column is an identity main effect whose
        raw covariate shares its name.
        """
        X = np.array(X, dtype=float)
        if X.ndim != 2 or X.shape[1] != len(names):
            raise ValueError(
                f"X of shape {X.shape} does not match {len(names)} name(s)."
            )
        terms = []
        covariates = []
        for name in names:
            if name == INTERCEPT:
                terms.append(Term(INTERCEPT, "intercept"))
            elif ":" in name:
                terms.append(Term(name, "interaction", interaction_constituents(name)))
            else:
                terms.append(Term(name, "main", (name,)))
                covariates.append(CovariateTransform(name))
        has_interaction = any(t.kind == "interaction" for t in terms)
        return cls(
            values=X,
            terms=tuple(terms),
            covariates=tuple(covariates),
            interaction_order=2 if has_interaction else 1,
        )


# ------------------------------------------------------------------ #
# Builder
# ------------------------------------------------------------------ #


def build_design_matrix(
    data: DataFrameLike,
    covariates: Sequence[str | CovariateTransform],
    *,
    interaction_order: int = 2,
    intercept: bool = True,
) -> DesignMatrix:
    """Build the design matrix for an Observation Set.

    Args:
        data: One row per observation, one column per raw covariate.
        covariates: Main effects in the desired column order, as raw
            column names (identity transform) or
            :class:`CovariateTransform` objects.
        interaction_order: ``1`` for main effects only, ``2`` to add
            every pairwise product of transformed main effects.
        intercept: Prepend a column of ones named ``"Intercept"``.

    Returns:
        A :class:`DesignMatrix` with ``1 + m + m(m-1)/2`` columns for
        *m* main effects (when ``interaction_order=2`` and
        ``intercept=True``).

    Raises:
        InvalidCovariateError: If a covariate is missing from *data*,
            has missing or non-numeric values, or is non-finite after
            its transform (e.g. ``log`` of a value ≤ 0).
        ValueError: If *covariates* is empty, names repeat, or
            *interaction_order* is not 1 or 2.
    """
    frame = _ensure_pandas_df(data, name="data")
    if interaction_order not in (1, 2):
        raise ValueError(
            f"interaction_order must be 1 or 2, got {interaction_order}."
        )
    transforms = [_coerce_transform(c) for c in covariates]
    if not transforms:
        raise ValueError("At least one covariate is required.")
    if len(frame) == 0:
        raise ValueError("The Observation Set must contain at least one observation.")

    term_names = [t.term_name for t in transforms]
    if len(set(term_names)) != len(term_names):
        raise ValueError(f"Duplicate main-effect terms: {term_names}")
    if any(":" in n or n == INTERCEPT for n in term_names):
        raise ValueError(
            f"Main-effect names may not contain ':' or equal '{INTERCEPT}'."
        )

    fitted: list[CovariateTransform] = []
    columns: list[np.ndarray] = []
    for transform in transforms:
        if transform.name not in frame.columns:
            raise InvalidCovariateError(
                transform.name, "required covariate is missing from the data."
            )
        raw = frame[transform.name].to_numpy()
        transform = transform.fit(raw)
        fitted.append(transform)
        columns.append(transform.apply(raw))
        logger.debug(
            "Covariate %s -> %s (%s, center=%s)",
            transform.name,
            transform.term_name,
            transform.kind,
            transform.center,
        )

    terms: list[Term] = []
    blocks: list[np.ndarray] = []
    n = len(frame)
    if intercept:
        terms.append(Term(INTERCEPT, "intercept"))
        blocks.append(np.ones(n))
    for transform, col in zip(fitted, columns):
        terms.append(Term(transform.term_name, "main", (transform.term_name,)))
        blocks.append(col)
    if interaction_order == 2:
        for i, j in itertools.combinations(range(len(fitted)), 2):
            a, b = fitted[i].term_name, fitted[j].term_name
            terms.append(Term(f"{a}:{b}", "interaction", (a, b)))
            blocks.append(columns[i] * columns[j])

    return DesignMatrix(
        values=np.column_stack(blocks),
        terms=tuple(terms),
        covariates=tuple(fitted),
        interaction_order=interaction_order,
    )
