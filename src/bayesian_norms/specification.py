"""Model and prior specifications.

A :class:`ModelSpecification` is the analyst's decision after reading
the posterior inclusion probabilities: which candidate terms enter the
model, and which likelihood family (with its canonical link) describes
the outcome.  The intercept is always part of the model and is not
listed among ``terms``.

A :class:`PriorSpecification` fixes the independent Normal priors on
the coefficients: mean zero and a shared precision (inverse variance),
with optional per-term overrides.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .design import INTERCEPT, interaction_constituents
from .families import GLMFamily, resolve_family


def _heredity_violations(terms: Iterable[str]) -> list[tuple[str, str]]:
    """``(interaction, missing_constituent)`` pairs for *terms*."""
    present = set(terms)
    out = []
    for name in present:
        for part in interaction_constituents(name):
            if part not in present:
                out.append((name, part))
    return sorted(out)


def satisfies_heredity(terms: Iterable[str]) -> bool:
    """Whether every interaction in *terms* has both constituents."""
    return not _heredity_violations(terms)


@dataclass(frozen=True)
class ModelSpecification:
    """A term subset plus a likelihood family.

    Attributes:
        terms: Candidate term names in the model (intercept implied).
        family: Resolved :class:`~bayesian_norms.families.GLMFamily`.
            Strings are resolved on construction.

    Raises:
        ValueError: If an interaction is present without both of its
            constituent main effects, or a term is repeated.
    """

    terms: tuple[str, ...]
    family: GLMFamily = field(default="poisson")  # type: ignore[assignment]

    def __post_init__(self) -> None:
        terms = tuple(t for t in self.terms if t != INTERCEPT)
        if len(set(terms)) != len(terms):
            raise ValueError(f"Duplicate terms in model specification: {list(terms)}")
        violations = _heredity_violations(terms)
        if violations:
            inter, part = violations[0]
            raise ValueError(
                f"Interaction '{inter}' requires main effect '{part}' to be "
                f"included in the model."
            )
        object.__setattr__(self, "terms", terms)
        object.__setattr__(self, "family", resolve_family(self.family))

    @property
    def columns(self) -> tuple[str, ...]:
        """Design-matrix columns in coefficient order (intercept first)."""
        return (INTERCEPT, *self.terms)

    @property
    def n_coefficients(self) -> int:
        return len(self.terms) + 1

    @property
    def link(self) -> str:
        return self.family.link

    def to_dict(self) -> dict[str, Any]:
        return {
            "terms": list(self.terms),
            "family": self.family.name,
            "family_params": self.family.params(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ModelSpecification:
        family = resolve_family(
            payload["family"], **dict(payload.get("family_params") or {})
        )
        return cls(terms=tuple(payload["terms"]), family=family)


@dataclass(frozen=True)
class PriorSpecification:
    """Independent Normal(0, 1/precision) priors on every coefficient.

    Attributes:
        precision: Shared prior precision (> 0).
        overrides: Per-term precision, keyed by column name
            (``"Intercept"`` included).
    """

    precision: float = 0.01
    overrides: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not (np.isfinite(self.precision) and self.precision > 0):
            raise ValueError(
                f"prior precision must be positive and finite, got {self.precision!r}."
            )
        for name, value in self.overrides.items():
            if not (np.isfinite(value) and value > 0):
                raise ValueError(
                    f"prior precision override for '{name}' must be positive "
                    f"and finite, got {value!r}."
                )
        object.__setattr__(self, "overrides", dict(self.overrides))

    def precisions(self, columns: Sequence[str]) -> np.ndarray:
        """Precision vector aligned with *columns*."""
        return np.array(
            [float(self.overrides.get(c, self.precision)) for c in columns],
            dtype=float,
        )

    @staticmethod
    def log_density(beta: np.ndarray, precisions: np.ndarray) -> float:
        """Joint log density of *beta* under Normal(0, 1/precisions) priors.

        *precisions* is the vector returned by :meth:`precisions`.
        """
        return float(
            0.5 * np.sum(np.log(precisions / (2.0 * np.pi)))
            - 0.5 * np.sum(precisions * beta * beta)
        )


def _coerce_prior(
    prior: PriorSpecification | None,
    precision: float | None,
) -> PriorSpecification:
    if prior is not None:
        return prior
    return PriorSpecification() if precision is None else PriorSpecification(precision)
