"""bayesian_norms — Bayesian normative modelling of test scores.

Builds demographic design matrices with pairwise interactions, selects
terms by Bayesian model averaging (posterior inclusion probabilities),
samples GLM coefficient posteriors with multi-chain MCMC (Poisson,
binomial and Gaussian families), checks convergence (R̂, ESS,
credible intervals), and scores individuals by the posterior-predictive
probability of their observed result.

Public API:
    .. autosummary::
        fit_normative_model
        NormativeModel
        build_design_matrix
        CovariateTransform
        DesignMatrix
        select_model
        recommend_terms
        sample_posterior
        SamplerConfig
        ChainPhase
        summarize_posterior
        effective_sample_size
        potential_scale_reduction
        autocorrelation
        credible_interval
        point_estimate
        score_observation
        score_observations
        ModelSpecification
        PriorSpecification
        GLMFamily
        PoissonFamily
        BinomialFamily
        GaussianFamily
        resolve_family
        register_family
        get_search_strategy
        set_search_strategy
        print_pip_table
        print_convergence_table
        print_scoring_result
"""

from ._config import get_search_strategy, set_search_strategy
from ._results import (
    ConvergenceReport,
    PosteriorSamples,
    ScoringResult,
    SelectionResult,
    WarningRecord,
)
from .core import NormativeModel, fit_normative_model
from .design import CovariateTransform, DesignMatrix, build_design_matrix
from .diagnostics import (
    autocorrelation,
    credible_interval,
    effective_sample_size,
    point_estimate,
    potential_scale_reduction,
    summarize_posterior,
)
from .display import print_convergence_table, print_pip_table, print_scoring_result
from .exceptions import (
    CovariateMismatchError,
    DegenerateModelError,
    InvalidCovariateError,
    NonConvergenceWarning,
    NumericOverflowError,
    PoorMixingWarning,
    SamplingCancelledError,
)
from .families import (
    BinomialFamily,
    GaussianFamily,
    GLMFamily,
    PoissonFamily,
    register_family,
    resolve_family,
)
from .sampler import ChainPhase, SamplerConfig, sample_posterior
from .scoring import score_observation, score_observations
from .selection import recommend_terms, select_model
from .specification import ModelSpecification, PriorSpecification

__all__ = [
    "fit_normative_model",
    "NormativeModel",
    "build_design_matrix",
    "CovariateTransform",
    "DesignMatrix",
    "select_model",
    "recommend_terms",
    "sample_posterior",
    "SamplerConfig",
    "ChainPhase",
    "summarize_posterior",
    "effective_sample_size",
    "potential_scale_reduction",
    "autocorrelation",
    "credible_interval",
    "point_estimate",
    "score_observation",
    "score_observations",
    "ModelSpecification",
    "PriorSpecification",
    "GLMFamily",
    "PoissonFamily",
    "BinomialFamily",
    "GaussianFamily",
    "resolve_family",
    "register_family",
    "get_search_strategy",
    "set_search_strategy",
    "print_pip_table",
    "print_convergence_table",
    "print_scoring_result",
    "ConvergenceReport",
    "PosteriorSamples",
    "ScoringResult",
    "SelectionResult",
    "WarningRecord",
    "CovariateMismatchError",
    "DegenerateModelError",
    "InvalidCovariateError",
    "NonConvergenceWarning",
    "NumericOverflowError",
    "PoorMixingWarning",
    "SamplingCancelledError",
]

__version__ = "0.1.0"
