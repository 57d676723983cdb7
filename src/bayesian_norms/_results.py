"""Typed result objects for selection, sampling, diagnostics and scoring.

Frozen dataclasses that provide:

* **Attribute access** — ``result.pip_table``, ``result.chains``, etc.
* **Dict-like access** — ``result["probability"]``, ``result.get("key")``,
  ``"key" in result`` for consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy and pandas types converted to native Python.  These
  dicts are the artifact layout exchanged at the package boundary;
  writing them to disk is left to the caller.

All result types are frozen (immutable after construction): a
posterior sample set is a versioned artifact, and re-fitting produces
a new one rather than mutating an existing one.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

from .families import GLMFamily, resolve_family

if TYPE_CHECKING:
    from .specification import ModelSpecification

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy/pandas objects to Python-native types.

    Handles nested dicts, lists, DataFrames (as lists of row dicts),
    np.ndarray, np.integer, and np.floating so that :meth:`to_dict`
    returns a fully JSON-serialisable structure.
    """
    if isinstance(obj, pd.DataFrame):
        return [_numpy_to_python(row) for row in obj.to_dict(orient="records")]
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    if hasattr(obj, "to_dict") and callable(obj.to_dict):
        return _numpy_to_python(obj.to_dict())
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test

    Subclasses may override ``_SERIALIZERS`` to register custom
    conversion functions for non-primitive fields (e.g.
    ``GLMFamily`` → ``str``).  Serializers compose with
    :func:`_numpy_to_python`.
    """

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: f.name,
    }

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary.

        Applies per-field serializers from ``_SERIALIZERS``, then runs
        :func:`_numpy_to_python` on every value.
        """
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            val = getattr(self, f.name)
            if f.name in self._SERIALIZERS:
                val = self._SERIALIZERS[f.name](val)
            result[f.name] = _numpy_to_python(val)
        return result


# ------------------------------------------------------------------ #
# Structured warnings
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class WarningRecord(_DictAccessMixin):
    """A convergence or numerical warning attached to a result.

    The same message is also emitted through :func:`warnings.warn`;
    the record keeps it with the artifact so it is never lost.
    """

    category: str
    """Warning class name (e.g. ``"PoorMixingWarning"``)."""

    message: str

    term: str | None = None
    """Coefficient the warning concerns, if any."""

    chain: int | None = None
    """Chain index the warning concerns, if any."""


def _records_from_dicts(items: Sequence[Mapping[str, Any]] | None) -> tuple[WarningRecord, ...]:
    return tuple(WarningRecord(**dict(item)) for item in (items or ()))


# ------------------------------------------------------------------ #
# PosteriorSamples
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class PosteriorSamples(_DictAccessMixin):
    """Retained posterior draws, chain by chain.

    Each entry of :attr:`chains` is a read-only array of shape
    ``(n_retained, n_coefficients)`` whose columns follow
    :attr:`terms` (intercept first).
    """

    chains: tuple[np.ndarray, ...]
    """Per-chain draws after burn-in and thinning."""

    terms: tuple[str, ...]
    """Coefficient names, intercept first."""

    family: GLMFamily
    """Likelihood family the draws were sampled under."""

    seeds: tuple[int | None, ...] = ()
    """Seed used by each chain's generator (``None`` if not recorded)."""

    acceptance_rates: tuple[float, ...] = ()
    """Post-adaptation acceptance rate per chain."""

    warnings: tuple[WarningRecord, ...] = ()
    """Structured warnings raised while sampling."""

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: f.name,
        "chains": lambda cs: [np.asarray(c).tolist() for c in cs],
    }

    def __post_init__(self) -> None:
        frozen = []
        for chain in self.chains:
            arr = np.array(chain, dtype=float)
            if arr.ndim != 2 or arr.shape[1] != len(self.terms):
                raise ValueError(
                    f"Chain of shape {arr.shape} does not match "
                    f"{len(self.terms)} term(s)."
                )
            arr.setflags(write=False)
            frozen.append(arr)
        object.__setattr__(self, "chains", tuple(frozen))
        object.__setattr__(self, "terms", tuple(self.terms))

    @property
    def n_chains(self) -> int:
        return len(self.chains)

    @property
    def n_draws(self) -> int:
        """Total retained draws across chains."""
        return int(sum(c.shape[0] for c in self.chains))

    def pooled(self) -> np.ndarray:
        """All chains concatenated, shape ``(n_draws, n_coefficients)``."""
        if not self.chains:
            return np.empty((0, len(self.terms)))
        return np.concatenate(self.chains, axis=0)

    def stacked(self) -> np.ndarray:
        """Chains as a ``(n_chains, n_per_chain, n_coefficients)`` array.

        Raises:
            ValueError: If chains differ in length.
        """
        lengths = {c.shape[0] for c in self.chains}
        if len(lengths) > 1:
            raise ValueError(f"Chains have unequal lengths: {sorted(lengths)}")
        return np.stack(self.chains, axis=0)

    def coefficient(self, term: str) -> np.ndarray:
        """Pooled draws for one coefficient."""
        return self.pooled()[:, self.terms.index(term)]

    def to_frame(self) -> pd.DataFrame:
        """Long-format draws: ``chain``, ``draw`` and one column per term."""
        frames = []
        for i, chain in enumerate(self.chains):
            df = pd.DataFrame(chain, columns=list(self.terms))
            df.insert(0, "draw", np.arange(chain.shape[0]))
            df.insert(0, "chain", i)
            frames.append(df)
        if not frames:
            return pd.DataFrame(columns=["chain", "draw", *self.terms])
        return pd.concat(frames, ignore_index=True)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["family_params"] = _numpy_to_python(self.family.params())
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> PosteriorSamples:
        family = resolve_family(
            payload["family"], **dict(payload.get("family_params") or {})
        )
        return cls(
            chains=tuple(np.asarray(c, dtype=float) for c in payload["chains"]),
            terms=tuple(payload["terms"]),
            family=family,
            seeds=tuple(payload.get("seeds") or ()),
            acceptance_rates=tuple(payload.get("acceptance_rates") or ()),
            warnings=_records_from_dicts(payload.get("warnings")),
        )


# ------------------------------------------------------------------ #
# SelectionResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class SelectionResult(_DictAccessMixin):
    """Posterior inclusion probabilities over the candidate term set."""

    pip_table: pd.DataFrame
    """Columns ``term`` and ``pip``, sorted by ``pip`` descending."""

    model_probabilities: pd.DataFrame
    """One row per evaluated model: ``terms``, ``n_terms``,
    ``log_marginal_likelihood``, ``log_prior``, ``probability``;
    sorted by ``probability`` descending."""

    recommended: ModelSpecification
    """Model chosen by the threshold decision rule."""

    threshold: float
    """Inclusion threshold used for :attr:`recommended`."""

    family: GLMFamily

    strategy: str
    """``"exhaustive"`` or ``"stochastic"``."""

    n_models_evaluated: int

    failed_models: tuple[tuple[str, ...], ...] = ()
    """Models whose marginal likelihood could not be evaluated."""

    candidate_terms: tuple[str, ...] = ()
    """Candidate terms in design-matrix column order."""

    prior_precision: float = 0.01
    concentration: float = 1.0

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "family": lambda f: f.name,
        "recommended": lambda s: s.to_dict(),
        "model_probabilities": lambda df: df.assign(
            terms=df["terms"].map(list)
        ),
    }

    @property
    def pips(self) -> dict[str, float]:
        """Mapping term → posterior inclusion probability."""
        return dict(zip(self.pip_table["term"], self.pip_table["pip"].astype(float)))

    def recommend(self, threshold: float | None = None) -> ModelSpecification:
        """Apply the inclusion decision rule at *threshold*.

        A term is kept when its PIP exceeds *threshold*; every kept
        interaction also pulls in its constituent main effects, even
        when they fall below the threshold.
        """
        from .selection import recommend_terms
        from .specification import ModelSpecification

        threshold = self.threshold if threshold is None else threshold
        order = list(self.candidate_terms) or list(self.pip_table["term"])
        terms = recommend_terms(self.pips, order, threshold)
        return ModelSpecification(terms=tuple(terms), family=self.family)


# ------------------------------------------------------------------ #
# ConvergenceReport
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ConvergenceReport(_DictAccessMixin):
    """Per-coefficient convergence diagnostics and credible intervals."""

    table: pd.DataFrame
    """One row per coefficient: ``term``, ``estimate``, ``mean``, ``sd``,
    ``mcse``, ``lower``, ``upper``, ``ess``, ``rhat``."""

    level: float
    """Credible-interval probability mass (e.g. 0.95)."""

    estimator: str
    """Central-tendency estimator used for ``estimate``."""

    interval: str
    """``"equal_tailed"`` or ``"hdi"``."""

    rhat_threshold: float

    n_chains: int

    n_draws: int
    """Draws per chain."""

    acceptance_rates: tuple[float, ...] = ()

    warnings: tuple[WarningRecord, ...] = ()

    @property
    def converged(self) -> bool:
        """Whether every R̂ is at or below the threshold (NaN ignored)."""
        rhat = self.table["rhat"].to_numpy(dtype=float)
        finite = rhat[np.isfinite(rhat)]
        return bool(np.all(finite <= self.rhat_threshold))

    def row(self, term: str) -> pd.Series:
        return self.table.set_index("term").loc[term]


# ------------------------------------------------------------------ #
# ScoringResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ScoringResult(_DictAccessMixin):
    """Posterior-predictive probability of an observed score."""

    probability: float
    """Monte Carlo estimate of P(Y ≤ observed | covariates, data)."""

    mc_se: float
    """Monte Carlo standard error of :attr:`probability`."""

    n_samples: int
    """Posterior draws averaged over."""

    observed_score: float

    per_sample: np.ndarray | None = field(default=None, repr=False)
    """Per-draw CDF values, when requested."""

    @property
    def percentile(self) -> float:
        return 100.0 * self.probability
