"""End-to-end normative modelling pipeline.

A normative model answers one question about an individual: how
unusual is this test score for someone with these demographics?  It
is built in four stages, each available on its own elsewhere in the
package:

1. **Design** — raw covariates are transformed (centred, logged,
   indicator-coded) and expanded with their pairwise interactions
   (:func:`~bayesian_norms.design.build_design_matrix`).

2. **Selection** — Bayesian model averaging over every
   heredity-respecting subset of candidate terms yields a posterior
   inclusion probability per term; the terms above the threshold
   (plus the main effects of any retained interaction) form the
   recommended model (:func:`~bayesian_norms.selection.select_model`).
   Passing ``terms=`` skips this stage and fixes the model directly.

3. **Sampling** — multi-chain MCMC draws from the posterior of the
   recommended model's coefficients
   (:func:`~bayesian_norms.sampler.sample_posterior`), summarised with
   R̂, ESS and credible intervals
   (:func:`~bayesian_norms.diagnostics.summarize_posterior`).

4. **Scoring** — the posterior-predictive probability of scoring at
   or below an observed value, averaged over the posterior draws
   (:meth:`NormativeModel.score`).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any, ClassVar

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _as_outcome_array, _ensure_pandas_df
from ._results import (
    ConvergenceReport,
    PosteriorSamples,
    ScoringResult,
    SelectionResult,
    _DictAccessMixin,
)
from ._typing import ArrayLike, CovariateRecord
from .design import CovariateTransform, DesignMatrix, build_design_matrix
from .diagnostics import summarize_posterior
from .families import GLMFamily, resolve_family
from .sampler import SamplerConfig, sample_posterior
from .scoring import score_observation, score_observations
from .selection import select_model
from .specification import ModelSpecification, PriorSpecification

logger = logging.getLogger(__name__)


def _design_to_dict(design: DesignMatrix) -> dict[str, Any]:
    return {
        "terms": design.term_names,
        "covariates": [asdict(t) for t in design.covariates],
        "interaction_order": design.interaction_order,
        "n_observations": design.n_observations,
    }


@dataclass(frozen=True)
class NormativeModel(_DictAccessMixin):
    """A fitted normative model: design, chosen terms and posterior."""

    design: DesignMatrix
    """Design the model was fitted on; its transforms map new people
    into the same term space."""

    specification: ModelSpecification

    posterior: PosteriorSamples

    report: ConvergenceReport

    selection: SelectionResult | None = None
    """``None`` when the terms were fixed by the caller."""

    sampler_config: SamplerConfig | None = None

    _SERIALIZERS: ClassVar[dict[str, Any]] = {
        "design": _design_to_dict,
    }

    @property
    def family(self) -> GLMFamily:
        return self.specification.family

    @property
    def converged(self) -> bool:
        return self.report.converged

    def score(
        self,
        covariates: CovariateRecord,
        observed_score: float,
        *,
        return_samples: bool = False,
    ) -> ScoringResult:
        """Normative probability of *observed_score* for one person."""
        return score_observation(
            self.posterior,
            self.design,
            covariates,
            observed_score,
            spec=self.specification,
            return_samples=return_samples,
        )

    def score_frame(
        self,
        frame: DataFrameLike,
        scores: Sequence[float] | ArrayLike,
    ) -> pd.DataFrame:
        """Normative probabilities for several people at once."""
        return score_observations(
            self.posterior, self.design, frame, scores, spec=self.specification
        )


def fit_normative_model(
    data: DataFrameLike,
    y: str | Sequence[float] | ArrayLike,
    covariates: Sequence[str | CovariateTransform],
    *,
    family: str | GLMFamily = "poisson",
    interaction_order: int = 2,
    terms: Sequence[str] | None = None,
    threshold: float = 0.5,
    prior_precision: float | None = None,
    concentration: float = 1.0,
    sampler_config: SamplerConfig | None = None,
    strategy: str | None = None,
    random_state: int | None = None,
    n_jobs: int = 1,
) -> NormativeModel:
    """Build, select, sample and summarise a normative model.

    Args:
        data: Observation Set, one row per person.  Accepts pandas or
            Polars DataFrames.
        y: Outcome column name in *data*, or the outcome values.
        covariates: Main effects in column order, as raw column names
            or :class:`~bayesian_norms.design.CovariateTransform`
            objects.
        family: ``"poisson"``, ``"binomial"``, ``"gaussian"``,
            ``"auto"`` or a family instance.
        interaction_order: 1 for main effects only, 2 to add pairwise
            interactions.
        terms: Fix the model's terms and skip selection.
        threshold: PIP threshold for the recommended model.
        prior_precision: Shared Normal prior precision on coefficients,
            used for both selection and sampling.  Defaults to
            ``sampler_config.prior_precision`` when a config is given,
            else 0.01.
        concentration: Beta-binomial model-prior concentration.
        sampler_config: Sampler options.  Defaults to
            :class:`~bayesian_norms.sampler.SamplerConfig` with
            *prior_precision*, *random_state* and *n_jobs* applied.
        strategy: Model-space search strategy (see
            :func:`~bayesian_norms.selection.select_model`).
        random_state: Seed for stochastic search and chain seeding.
        n_jobs: Parallel workers for selection and sampling.

    Returns:
        A :class:`NormativeModel`.

    Raises:
        InvalidCovariateError: On missing or non-finite covariates.
        DegenerateModelError: If the outcome is constant or the design
            rank deficient.
        ValueError: If *terms* names a column the design lacks, if
            *prior_precision* disagrees with *sampler_config*, or
            another option is invalid.
    """
    if sampler_config is None:
        sampler_config = SamplerConfig(
            prior_precision=0.01 if prior_precision is None else prior_precision,
            random_state=random_state,
            n_jobs=n_jobs,
        )
    elif (
        prior_precision is not None
        and prior_precision != sampler_config.prior_precision
    ):
        raise ValueError(
            f"prior_precision={prior_precision!r} disagrees with "
            f"sampler_config.prior_precision={sampler_config.prior_precision!r}; "
            "selection and sampling must share one prior."
        )
    # One prior for both PIPs and the posterior draws.
    prior = PriorSpecification(sampler_config.prior_precision)

    frame = _ensure_pandas_df(data, name="data")
    if isinstance(y, str):
        if y not in frame.columns:
            raise ValueError(f"Outcome column '{y}' is not in the data.")
        y_values = frame[y].to_numpy(dtype=float)
    else:
        y_values = _as_outcome_array(y)
    if y_values.shape[0] != len(frame):
        raise ValueError(
            f"y has {y_values.shape[0]} observation(s) but data has {len(frame)}."
        )

    design = build_design_matrix(frame, covariates, interaction_order=interaction_order)
    fam = resolve_family(family, y_values)
    fam.validate_y(y_values)
    # Nuisance parameters are fixed once, on the full design.
    fam = fam.calibrate(np.asarray(design.values), y_values)
    logger.debug(
        "Normative model: %d observation(s), %d candidate term(s), family=%s",
        design.n_observations,
        len(design.candidate_terms),
        fam.name,
    )

    selection: SelectionResult | None = None
    if terms is None:
        selection = select_model(
            design,
            y_values,
            fam,
            prior=prior,
            concentration=concentration,
            threshold=threshold,
            strategy=strategy,
            random_state=random_state,
            n_jobs=n_jobs,
        )
        spec = ModelSpecification(terms=selection.recommended.terms, family=fam)
    else:
        spec = ModelSpecification(terms=tuple(terms), family=fam)
        unknown = [t for t in spec.terms if t not in design.term_names]
        if unknown:
            raise ValueError(
                f"Term(s) {unknown} are not columns of the design matrix "
                f"{design.term_names}."
            )
    logger.debug("Model terms: %s", list(spec.terms))

    posterior = sample_posterior(design, y_values, spec, sampler_config, prior=prior)
    report = summarize_posterior(posterior)
    return NormativeModel(
        design=design,
        specification=spec,
        posterior=posterior,
        report=report,
        selection=selection,
        sampler_config=sampler_config,
    )
