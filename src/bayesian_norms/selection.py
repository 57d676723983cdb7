"""Bayesian variable selection over candidate covariate terms.

For every term in the Candidate Term Set the selector estimates the
posterior inclusion probability (PIP) — the posterior probability that
the term's coefficient is non-zero — by Bayesian model averaging over
the space of term subsets.

Model space
~~~~~~~~~~~
A model is a subset of the *k* candidate terms (the intercept is
always included).  Subsets that contain an interaction without both of
its main effects violate the heredity invariant and receive zero prior
mass.

Model prior
~~~~~~~~~~~
Beta-binomial on model size: with inclusion rate π ~ Beta(1, c),

    p(M) = B(k_M + 1, k − k_M + c) / B(1, c)

where k_M is the number of terms in M and c is the *concentration*.
For c = 1 every model size is equally likely a priori and the null
model alone receives 1/(k+1) of the mass — substantially more than any
other single model — while the remainder spreads over model space.
Larger c pushes mass further towards sparse models.

Marginal likelihood
~~~~~~~~~~~~~~~~~~~
Laplace approximation at the posterior mode under the Normal
coefficient prior (see :mod:`._laplace`).

Search strategies
~~~~~~~~~~~~~~~~~
* ``"exhaustive"`` — evaluate every valid model.  Evaluations are
  independent and run in parallel via ``joblib``; aggregation into the
  PIP table happens serially afterwards.  Posterior model
  probabilities sum to one.
* ``"stochastic"`` — MC³ (Madigan & York, 1995): a Metropolis random
  walk over model space that toggles one term per step.  Marginal
  likelihoods are cached per visited model and posterior model
  probabilities are estimated by renormalising over the visited set,
  which converges to the exact answer as the visited set grows.

Under ``"auto"`` (the default, see :mod:`._config`) exhaustive search
is used for k ≤ ``max_terms_exhaustive`` and stochastic search beyond.

Decision rule
~~~~~~~~~~~~~
The selector does not decide; it recommends.  A term is a candidate
for inclusion when its PIP exceeds ``threshold`` (default 0.5, a
convention rather than a derived quantity), and every retained
interaction also retains its constituent main effects.

Reference:
    Madigan, D. & York, J. (1995). Bayesian graphical models for
    discrete data. *International Statistical Review*, 63(2), 215–232.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import special

from ._compat import _as_outcome_array
from ._config import resolve_search_strategy
from ._laplace import posterior_mode
from ._results import SelectionResult
from .design import INTERCEPT, DesignMatrix
from .exceptions import DegenerateModelError, NumericOverflowError
from .families import GLMFamily, resolve_family
from .specification import (
    ModelSpecification,
    PriorSpecification,
    _coerce_prior,
    satisfies_heredity,
)

logger = logging.getLogger(__name__)

_MAX_TERMS_EXHAUSTIVE = 20


# ------------------------------------------------------------------ #
# Model prior
# ------------------------------------------------------------------ #


def log_model_prior(n_included: int, n_candidates: int, concentration: float) -> float:
    """Beta-binomial log prior probability of one specific model."""
    return float(
        special.betaln(n_included + 1.0, n_candidates - n_included + concentration)
        - special.betaln(1.0, concentration)
    )


# ------------------------------------------------------------------ #
# Decision rule
# ------------------------------------------------------------------ #


def recommend_terms(
    pips: Mapping[str, float],
    candidate_order: Sequence[str],
    threshold: float = 0.5,
) -> list[str]:
    """Terms retained at *threshold*, in design-matrix column order.

    Keeps every term with PIP > *threshold*, then adds the constituent
    main effects of each kept interaction.
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must lie in [0, 1], got {threshold}.")
    keep = {t for t, p in pips.items() if p > threshold}
    for term in list(keep):
        if ":" in term:
            keep.update(term.split(":"))
    return [t for t in candidate_order if t in keep]


# ------------------------------------------------------------------ #
# Validation
# ------------------------------------------------------------------ #


def _check_degenerate(design: DesignMatrix, y: np.ndarray) -> None:
    if y.shape[0] != design.n_observations:
        raise ValueError(
            f"y has {y.shape[0]} observation(s) but the design matrix has "
            f"{design.n_observations}."
        )
    if np.ptp(y) == 0:
        raise DegenerateModelError(
            "Outcome has zero variance; no term can be informative.", field="y"
        )
    rank = np.linalg.matrix_rank(design.values)
    if rank < design.n_terms:
        # Name the first column that adds nothing to the span of the
        # columns before it.
        offending = None
        for j in range(1, design.n_terms + 1):
            if np.linalg.matrix_rank(design.values[:, :j]) < j:
                offending = design.term_names[j - 1]
                break
        raise DegenerateModelError(
            f"Design matrix is rank deficient (rank {rank} < {design.n_terms} "
            f"columns); term '{offending}' is a linear combination of "
            f"earlier columns.",
            field=offending,
        )


# ------------------------------------------------------------------ #
# Per-model evaluation
# ------------------------------------------------------------------ #


def _evaluate_model(
    family: GLMFamily,
    X: np.ndarray,
    y: np.ndarray,
    precisions: np.ndarray,
    model: tuple[int, ...],
) -> tuple[tuple[int, ...], float, str | None]:
    """Laplace log marginal likelihood for one model (column subset).

    Numerical failures are fatal to this model only: the error is
    returned as a string and the model receives −∞.
    """
    cols = (0, *(j + 1 for j in model))
    try:
        mode = posterior_mode(family, X[:, cols], y, precisions[list(cols)])
        value = mode.laplace_log_marginal()
    except (NumericOverflowError, np.linalg.LinAlgError, FloatingPointError) as exc:
        return model, -np.inf, f"{type(exc).__name__}: {exc}"
    if not np.isfinite(value):
        return model, -np.inf, "non-finite marginal likelihood"
    return model, float(value), None


def _valid_models(
    candidates: Sequence[str],
) -> Iterable[tuple[int, ...]]:
    """Every heredity-respecting subset, as sorted index tuples."""
    k = len(candidates)
    for size in range(k + 1):
        for combo in itertools.combinations(range(k), size):
            if satisfies_heredity(candidates[j] for j in combo):
                yield combo


def _is_valid(model: frozenset[int], candidates: Sequence[str]) -> bool:
    return satisfies_heredity(candidates[j] for j in model)


# ------------------------------------------------------------------ #
# Search strategies
# ------------------------------------------------------------------ #


def _exhaustive(
    family: GLMFamily,
    X: np.ndarray,
    y: np.ndarray,
    precisions: np.ndarray,
    candidates: Sequence[str],
    n_jobs: int,
) -> list[tuple[tuple[int, ...], float, str | None]]:
    models = list(_valid_models(candidates))
    logger.debug("Exhaustive search over %d valid model(s)", len(models))
    # Parallel per-model evaluation; results come back in submission
    # order and are aggregated serially by the caller.
    return list(
        Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_evaluate_model)(family, X, y, precisions, m) for m in models
        )
    )


def _stochastic(
    family: GLMFamily,
    X: np.ndarray,
    y: np.ndarray,
    precisions: np.ndarray,
    candidates: Sequence[str],
    concentration: float,
    n_iter: int,
    rng: np.random.Generator,
) -> list[tuple[tuple[int, ...], float, str | None]]:
    """MC³ add/drop search starting from the null model.

    Returns every model the walk evaluated.  The per-term visit
    frequency of the walk is logged at DEBUG level as a check on the
    renormalised PIPs.  With no candidate terms only the null model
    exists and is returned without a walk.
    """
    k = len(candidates)
    if k == 0:
        return [_evaluate_model(family, X, y, precisions, ())]
    cache: dict[frozenset[int], tuple[float, str | None]] = {}

    def log_post(model: frozenset[int]) -> float:
        if model not in cache:
            _, lml, err = _evaluate_model(
                family, X, y, precisions, tuple(sorted(model))
            )
            cache[model] = (lml, err)
        return cache[model][0] + log_model_prior(len(model), k, concentration)

    current: frozenset[int] = frozenset()
    current_lp = log_post(current)
    visits = np.zeros(k)
    n_accept = 0
    for _ in range(n_iter):
        j = int(rng.integers(k))
        proposal = current ^ {j}
        if _is_valid(proposal, candidates):
            proposal_lp = log_post(proposal)
            log_ratio = proposal_lp - current_lp
            if np.isfinite(proposal_lp) and (
                log_ratio >= 0 or np.log(rng.random()) < log_ratio
            ):
                current, current_lp = proposal, proposal_lp
                n_accept += 1
        for t in current:
            visits[t] += 1
    logger.debug(
        "Stochastic search: %d iteration(s), %d unique model(s), "
        "acceptance %.3f",
        n_iter,
        len(cache),
        n_accept / max(n_iter, 1),
    )
    logger.debug(
        "Stochastic search visit frequencies: %s",
        {candidates[j]: round(float(v), 4) for j, v in enumerate(visits / n_iter)},
    )
    return [(tuple(sorted(m)), lml, err) for m, (lml, err) in cache.items()]


# ------------------------------------------------------------------ #
# Public entry point
# ------------------------------------------------------------------ #


def select_model(
    design: DesignMatrix,
    y: np.ndarray,
    family: str | GLMFamily = "poisson",
    *,
    prior: PriorSpecification | None = None,
    prior_precision: float | None = None,
    concentration: float = 1.0,
    threshold: float = 0.5,
    strategy: str | None = None,
    n_iter: int = 10_000,
    random_state: int | np.random.Generator | None = None,
    n_jobs: int = 1,
    max_terms_exhaustive: int = _MAX_TERMS_EXHAUSTIVE,
) -> SelectionResult:
    """Posterior inclusion probabilities for every candidate term.

    Args:
        design: Full design matrix (intercept column required).
        y: Outcome vector of length ``design.n_observations``.
        family: Likelihood family name or instance.
        prior: Coefficient prior.  Overrides *prior_precision*.
        prior_precision: Shared Normal prior precision (default 0.01).
        concentration: Beta-binomial model-prior concentration (> 0);
            larger values favour smaller models.
        threshold: PIP threshold for the recommended model.
        strategy: ``"exhaustive"``, ``"stochastic"``, ``"auto"`` or
            ``None`` for the configured default.
        n_iter: MC³ iterations for stochastic search.
        random_state: Seed or generator for stochastic search.
        n_jobs: Parallel workers for exhaustive evaluation.
        max_terms_exhaustive: Largest *k* enumerated under ``"auto"``.

    Returns:
        A :class:`~bayesian_norms._results.SelectionResult`.

    Raises:
        DegenerateModelError: If *y* has zero variance, the design is
            rank deficient, or no model could be evaluated.
        ValueError: On invalid options or an unsuitable outcome.
    """
    if not design.has_intercept or design.term_names[0] != INTERCEPT:
        raise ValueError("select_model() requires a design with a leading intercept.")
    if not (np.isfinite(concentration) and concentration > 0):
        raise ValueError(f"concentration must be positive, got {concentration!r}.")
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must lie in [0, 1], got {threshold}.")
    if n_iter < 1:
        raise ValueError(f"n_iter must be >= 1, got {n_iter}.")

    y = _as_outcome_array(y)
    fam = resolve_family(family, y)
    fam.validate_y(y)
    _check_degenerate(design, y)
    X = np.asarray(design.values, dtype=float)
    fam = fam.calibrate(X, y)

    prior = _coerce_prior(prior, prior_precision)
    precisions = prior.precisions(design.term_names)
    candidates = design.candidate_terms
    k = len(candidates)

    resolved = resolve_search_strategy(strategy, k, max_terms_exhaustive)
    logger.debug("Model selection: k=%d candidate term(s), strategy=%s", k, resolved)

    if resolved == "exhaustive":
        evaluated = _exhaustive(fam, X, y, precisions, candidates, n_jobs)
    else:
        rng = (
            random_state
            if isinstance(random_state, np.random.Generator)
            else np.random.default_rng(random_state)
        )
        evaluated = _stochastic(
            fam, X, y, precisions, candidates, concentration, n_iter, rng
        )

    # ---- Serial aggregation ---------------------------------------
    failed = []
    rows = []
    for model, lml, err in evaluated:
        names = tuple(candidates[j] for j in model)
        if err is not None:
            failed.append(names)
            logger.debug("Model %s failed: %s", names or "(null)", err)
        rows.append(
            {
                "terms": names,
                "n_terms": len(model),
                "log_marginal_likelihood": lml,
                "log_prior": log_model_prior(len(model), k, concentration),
            }
        )
    table = pd.DataFrame(rows)
    log_post = (table["log_marginal_likelihood"] + table["log_prior"]).to_numpy()
    if not np.any(np.isfinite(log_post)):
        raise DegenerateModelError(
            "No candidate model produced a finite marginal likelihood."
        )
    log_norm = special.logsumexp(log_post[np.isfinite(log_post)])
    with np.errstate(invalid="ignore"):
        probs = np.where(np.isfinite(log_post), np.exp(log_post - log_norm), 0.0)
    table["probability"] = probs
    table = table.sort_values(
        ["probability", "n_terms"], ascending=[False, True], kind="mergesort"
    ).reset_index(drop=True)

    pip = {t: 0.0 for t in candidates}
    for terms, p in zip(table["terms"], table["probability"]):
        for t in terms:
            pip[t] += float(p)
    pip_table = (
        pd.DataFrame({"term": list(pip), "pip": np.clip(list(pip.values()), 0.0, 1.0)})
        .sort_values("pip", ascending=False, kind="mergesort")
        .reset_index(drop=True)
    )

    recommended = ModelSpecification(
        terms=tuple(recommend_terms(pip, candidates, threshold)), family=fam
    )
    return SelectionResult(
        pip_table=pip_table,
        model_probabilities=table,
        recommended=recommended,
        threshold=threshold,
        family=fam,
        strategy=resolved,
        n_models_evaluated=len(evaluated),
        failed_models=tuple(failed),
        candidate_terms=tuple(candidates),
        prior_precision=prior.precision,
        concentration=concentration,
    )
