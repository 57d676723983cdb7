"""Posterior-predictive scoring of an individual's test result.

Given posterior draws β⁽¹⁾ … β⁽ˢ⁾ of a fitted model, a new person's raw
covariates *x* and their observed score *y*, the normative probability
is the Monte Carlo average

    P(Y ≤ y | x, data) ≈ (1/S) Σₛ F(y ; g⁻¹(xᵀβ⁽ˢ⁾))

where F is the family's CDF and g⁻¹ its inverse link.  For a discrete
family the result is the probability of scoring *at or below* the
observed value; a low probability marks an unusually low score
relative to demographically comparable peers.

The per-draw CDF evaluation is a vectorised map (one column of the
``(S, n)`` linear-predictor matrix per person) followed by a mean over
draws; the Monte Carlo standard error is ``sd / √S``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df
from ._results import PosteriorSamples, ScoringResult
from ._typing import ArrayLike, CovariateRecord
from .design import DesignMatrix
from .specification import ModelSpecification

logger = logging.getLogger(__name__)


def _check_terms(
    posterior: PosteriorSamples,
    design: DesignMatrix,
    spec: ModelSpecification | None,
) -> None:
    if spec is not None and tuple(spec.columns) != tuple(posterior.terms):
        raise ValueError(
            f"Model specification terms {list(spec.columns)} do not match the "
            f"posterior terms {list(posterior.terms)}."
        )
    unknown = [t for t in posterior.terms if t not in design.term_names]
    if unknown:
        raise ValueError(
            f"Posterior term(s) {unknown} are not columns of the design matrix."
        )
    if posterior.n_draws == 0:
        raise ValueError("Cannot score against a posterior without draws.")


def _mc_se(per_sample: np.ndarray) -> np.ndarray:
    s = per_sample.shape[0]
    if s < 2:
        return np.zeros(per_sample.shape[1:])
    return np.std(per_sample, axis=0, ddof=1) / np.sqrt(s)


def score_observation(
    posterior: PosteriorSamples,
    design: DesignMatrix,
    covariates: CovariateRecord,
    observed_score: float,
    *,
    spec: ModelSpecification | None = None,
    return_samples: bool = False,
) -> ScoringResult:
    """Normative probability of one observed score.

    Args:
        posterior: Draws of the fitted model.
        design: Design matrix the model was fitted on; supplies the
            covariate transforms and centring constants.
        covariates: Raw covariate name → value for the person scored.
        observed_score: The person's test result.
        spec: Optional specification; must agree with the posterior.
        return_samples: Keep the per-draw CDF values on the result.

    Returns:
        A :class:`~bayesian_norms._results.ScoringResult`.

    Raises:
        CovariateMismatchError: If *covariates* omits a covariate the
            fitted terms depend on.
        InvalidCovariateError: If a covariate is non-finite after its
            transform.
        ValueError: If *spec* and *posterior* disagree, or the score is
            not finite.
    """
    _check_terms(posterior, design, spec)
    y = float(observed_score)
    if not np.isfinite(y):
        raise ValueError(f"observed_score must be finite, got {observed_score!r}.")
    x = design.expand(covariates, posterior.terms)
    draws = posterior.pooled()
    mu = posterior.family.mean(draws @ x)
    per_sample = np.asarray(posterior.family.cdf(y, mu), dtype=float)
    probability = float(per_sample.mean())
    mc_se = float(_mc_se(per_sample[:, np.newaxis])[0])
    logger.debug(
        "Scored y=%g over %d draw(s): p=%.4f (mc_se=%.4f)",
        y,
        per_sample.shape[0],
        probability,
        mc_se,
    )
    return ScoringResult(
        probability=probability,
        mc_se=mc_se,
        n_samples=int(per_sample.shape[0]),
        observed_score=y,
        per_sample=per_sample if return_samples else None,
    )


def score_observations(
    posterior: PosteriorSamples,
    design: DesignMatrix,
    frame: DataFrameLike,
    scores: Sequence[float] | ArrayLike,
    *,
    spec: ModelSpecification | None = None,
) -> pd.DataFrame:
    """Vectorised :func:`score_observation` for several people.

    Returns:
        DataFrame indexed like *frame* with columns ``observed_score``,
        ``probability``, ``mc_se`` and ``percentile``.
    """
    _check_terms(posterior, design, spec)
    frame = _ensure_pandas_df(frame, name="frame")
    y = np.asarray(scores, dtype=float).ravel()
    if y.shape[0] != len(frame):
        raise ValueError(
            f"Got {y.shape[0]} score(s) for {len(frame)} covariate record(s)."
        )
    if not np.all(np.isfinite(y)):
        raise ValueError("Observed scores must be finite.")
    X = design.expand_frame(frame, posterior.terms)
    mu = posterior.family.mean(posterior.pooled() @ X.T)
    per_sample = np.asarray(posterior.family.cdf(y[np.newaxis, :], mu), dtype=float)
    probability = per_sample.mean(axis=0)
    return pd.DataFrame(
        {
            "observed_score": y,
            "probability": probability,
            "mc_se": _mc_se(per_sample),
            "percentile": 100.0 * probability,
        },
        index=frame.index,
    )
