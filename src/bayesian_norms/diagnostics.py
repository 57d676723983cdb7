"""Convergence diagnostics and posterior summaries.

Everything here is read-only with respect to the posterior sample set:
functions take draws in, return numbers or a report, and never raise
because a chain mixed badly.  Poor mixing is reported, not enforced.

Per-coefficient diagnostics:

* **Autocorrelation** — the normalised sample autocorrelation of a
  single chain, computed by FFT via ``statsmodels.tsa.stattools.acf``.

* **Effective sample size (ESS)** — the number of independent draws
  carrying the same information as the correlated ones.  Combines
  within-chain autocovariances with the between-chain variance and
  truncates the autocorrelation sum with Geyer's initial monotone
  sequence estimator:

      ρ̂ₜ = 1 − (W − C̄ₜ) / V̂⁺,    τ̂ = −1 + 2 Σₖ P̂ₖ,    ESS = m n / τ̂

  where C̄ₜ is the mean lag-t autocovariance across chains and
  P̂ₖ = ρ̂₂ₖ + ρ̂₂ₖ₊₁ is summed while positive and forced to be
  non-increasing.

  Reference: Geyer, C. J. (1992). Practical Markov chain Monte Carlo.
  *Statistical Science*, 7(4), 473–483.

* **Potential scale reduction (R̂)** — compares between-chain to
  within-chain variance.  With *m* chains of *n* draws,

      V̂⁺ = (n − 1)/n · W + B/n,    R̂ = √(V̂⁺ / W)

  Values near 1 indicate the chains agree.  By default each chain is
  split in half first, so that a single drifting chain is detected
  too (and a single chain still yields a defined R̂).

  Reference: Gelman, A. & Rubin, D. B. (1992). Inference from
  iterative simulation using multiple sequences. *Statistical
  Science*, 7(4), 457–472.

* **Credible interval** — equal-tailed quantiles, or the highest
  density interval (shortest window holding the requested mass).

* **Point estimate** — posterior mean, median, or mode (argmax of a
  Gaussian kernel density estimate on a 512-point grid).

* **Monte Carlo standard error** — sd / √ESS.
"""

from __future__ import annotations

import logging
import math
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.tsa.stattools import acf

from ._results import ConvergenceReport, PosteriorSamples, WarningRecord
from .exceptions import PoorMixingWarning

logger = logging.getLogger(__name__)

_MIN_DRAWS_RHAT = 4
_KDE_GRID = 512
_ESTIMATORS = ("mean", "median", "mode")
_INTERVALS = ("equal_tailed", "hdi")


def _as_chains(chains: np.ndarray) -> np.ndarray:
    """Coerce draws to shape ``(n_chains, n_draws)``."""
    arr = np.asarray(chains, dtype=float)
    if arr.ndim == 1:
        return arr[np.newaxis, :]
    if arr.ndim != 2:
        raise ValueError(
            f"Expected draws of shape (n_draws,) or (n_chains, n_draws), "
            f"got {arr.shape}."
        )
    return arr


# ------------------------------------------------------------------ #
# Chain-level statistics
# ------------------------------------------------------------------ #


def autocorrelation(x: np.ndarray, max_lag: int | None = None) -> np.ndarray:
    """Sample autocorrelation of one chain for lags ``0..max_lag``.

    A constant chain has autocorrelation 1 at lag 0 and 0 elsewhere.
    """
    x = np.asarray(x, dtype=float).ravel()
    n = x.shape[0]
    if n == 0:
        raise ValueError("autocorrelation() requires at least one draw.")
    max_lag = n - 1 if max_lag is None else min(int(max_lag), n - 1)
    if max_lag < 0:
        raise ValueError(f"max_lag must be >= 0, got {max_lag}.")
    if n < 2 or np.ptp(x) == 0:
        out = np.zeros(max_lag + 1)
        out[0] = 1.0
        return out
    return np.asarray(acf(x, nlags=max_lag, fft=True), dtype=float)


def effective_sample_size(chains: np.ndarray) -> float:
    """Multi-chain effective sample size of one coefficient.

    Args:
        chains: Draws of shape ``(n_chains, n_draws)``; a 1-D array is
            treated as a single chain.

    Returns:
        ESS, or NaN when fewer than four draws per chain are available
        or the draws are constant.
    """
    chains = _as_chains(chains)
    m, n = chains.shape
    if n < _MIN_DRAWS_RHAT:
        return float("nan")
    within = float(np.mean(np.var(chains, axis=1, ddof=1)))
    if not within > 0:
        return float("nan")
    between = float(np.var(np.mean(chains, axis=1), ddof=1)) if m > 1 else 0.0
    var_plus = (n - 1) / n * within + between

    acov = np.stack([autocorrelation(c) * np.var(c) for c in chains])
    rho = 1.0 - (within - acov.mean(axis=0)) / var_plus
    rho[0] = 1.0

    # Geyer's initial monotone sequence over adjacent-lag pairs.
    total = 0.0
    previous = np.inf
    for t in range(0, n - 1, 2):
        pair = rho[t] + rho[t + 1]
        if pair <= 0.0:
            break
        pair = min(pair, previous)
        total += pair
        previous = pair
    tau = -1.0 + 2.0 * total
    tau = max(tau, 1.0 / math.log10(m * n))
    return float(m * n / tau)


def potential_scale_reduction(chains: np.ndarray, split: bool = True) -> float:
    """Gelman–Rubin R̂ of one coefficient.

    Args:
        chains: Draws of shape ``(n_chains, n_draws)``.
        split: Split every chain into two halves first.

    Returns:
        R̂, or NaN with fewer than four draws per chain, fewer than
        two (split) chains, or zero within-chain variance.
    """
    chains = _as_chains(chains)
    if chains.shape[1] < _MIN_DRAWS_RHAT:
        return float("nan")
    if split:
        half = chains.shape[1] // 2
        chains = np.concatenate([chains[:, :half], chains[:, -half:]], axis=0)
    m, n = chains.shape
    if m < 2:
        return float("nan")
    within = float(np.mean(np.var(chains, axis=1, ddof=1)))
    if not within > 0:
        return float("nan")
    between = n * float(np.var(np.mean(chains, axis=1), ddof=1))
    var_plus = (n - 1) / n * within + between / n
    return float(np.sqrt(var_plus / within))


# ------------------------------------------------------------------ #
# Pooled-draw summaries
# ------------------------------------------------------------------ #


def credible_interval(
    draws: np.ndarray,
    level: float = 0.95,
    method: str = "equal_tailed",
) -> tuple[float, float]:
    """Credible interval holding *level* of the posterior mass.

    Args:
        draws: Pooled draws of one coefficient.
        level: Probability mass in (0, 1).
        method: ``"equal_tailed"`` (quantiles) or ``"hdi"`` (shortest
            interval).

    Raises:
        ValueError: On an empty sample, a level outside (0, 1) or an
            unknown method.
    """
    x = np.asarray(draws, dtype=float).ravel()
    if x.size == 0:
        raise ValueError("credible_interval() requires at least one draw.")
    if not 0.0 < level < 1.0:
        raise ValueError(f"level must lie in (0, 1), got {level}.")
    if method == "equal_tailed":
        alpha = 1.0 - level
        lo, hi = np.quantile(x, [alpha / 2.0, 1.0 - alpha / 2.0])
        return float(lo), float(hi)
    if method == "hdi":
        x = np.sort(x)
        n = x.size
        width = min(max(int(np.floor(level * n)), 1), n - 1) if n > 1 else 0
        if width == 0:
            return float(x[0]), float(x[0])
        spans = x[width:] - x[: n - width]
        i = int(np.argmin(spans))
        return float(x[i]), float(x[i + width])
    raise ValueError(
        f"Unknown interval method {method!r}. Choose from: {list(_INTERVALS)}"
    )


def point_estimate(draws: np.ndarray, estimator: str = "mean") -> float:
    """Central tendency of pooled draws.

    ``"mode"`` is the argmax of a Gaussian KDE evaluated on a
    512-point grid spanning the draws.
    """
    x = np.asarray(draws, dtype=float).ravel()
    if x.size == 0:
        raise ValueError("point_estimate() requires at least one draw.")
    if estimator == "mean":
        return float(np.mean(x))
    if estimator == "median":
        return float(np.median(x))
    if estimator == "mode":
        if x.size < 2 or np.ptp(x) == 0:
            return float(x[0])
        kde = stats.gaussian_kde(x)
        grid = np.linspace(x.min(), x.max(), _KDE_GRID)
        return float(grid[int(np.argmax(kde(grid)))])
    raise ValueError(
        f"Unknown estimator {estimator!r}. Choose from: {list(_ESTIMATORS)}"
    )


# ------------------------------------------------------------------ #
# Report
# ------------------------------------------------------------------ #


def _equal_length_chains(posterior: PosteriorSamples) -> np.ndarray:
    lengths = [c.shape[0] for c in posterior.chains]
    if len(set(lengths)) > 1:
        shortest = min(lengths)
        logger.debug("Truncating chains to %d draw(s) for diagnostics", shortest)
        return np.stack([c[:shortest] for c in posterior.chains])
    return posterior.stacked()


def summarize_posterior(
    posterior: PosteriorSamples,
    *,
    level: float = 0.95,
    estimator: str = "mean",
    interval: str = "equal_tailed",
    rhat_threshold: float = 1.1,
) -> ConvergenceReport:
    """Per-coefficient summary and convergence report.

    Args:
        posterior: Sampled chains.
        level: Credible-interval mass.
        estimator: ``"mean"``, ``"median"`` or ``"mode"``.
        interval: ``"equal_tailed"`` or ``"hdi"``.
        rhat_threshold: R̂ above which :class:`PoorMixingWarning` is
            emitted for a coefficient.

    Returns:
        A :class:`~bayesian_norms._results.ConvergenceReport`.  Its
        ``warnings`` carry the sampler's records plus any new
        poor-mixing records.

    Raises:
        ValueError: On invalid options or a posterior without draws.
    """
    if estimator not in _ESTIMATORS:
        raise ValueError(
            f"Unknown estimator {estimator!r}. Choose from: {list(_ESTIMATORS)}"
        )
    if interval not in _INTERVALS:
        raise ValueError(
            f"Unknown interval method {interval!r}. Choose from: {list(_INTERVALS)}"
        )
    if not 0.0 < level < 1.0:
        raise ValueError(f"level must lie in (0, 1), got {level}.")
    if not rhat_threshold >= 1.0:
        raise ValueError(f"rhat_threshold must be >= 1, got {rhat_threshold}.")
    if posterior.n_chains == 0 or posterior.n_draws == 0:
        raise ValueError("Cannot summarise a posterior without draws.")

    stacked = _equal_length_chains(posterior)
    n_chains, n_per_chain, _ = stacked.shape
    rates = np.asarray(posterior.acceptance_rates, dtype=float)
    finite_rates = rates[np.isfinite(rates)]
    acceptance = float(finite_rates.mean()) if finite_rates.size else float("nan")

    rows = []
    records = list(posterior.warnings)
    for j, term in enumerate(posterior.terms):
        per_chain = stacked[:, :, j]
        pooled = per_chain.ravel()
        sd = float(np.std(pooled, ddof=1)) if pooled.size > 1 else float("nan")
        ess = effective_sample_size(per_chain)
        rhat = potential_scale_reduction(per_chain)
        lower, upper = credible_interval(pooled, level, interval)
        rows.append(
            {
                "term": term,
                "estimate": point_estimate(pooled, estimator),
                "mean": float(np.mean(pooled)),
                "sd": sd,
                "mcse": sd / np.sqrt(ess) if ess > 0 else float("nan"),
                "lower": lower,
                "upper": upper,
                "ess": ess,
                "rhat": rhat,
                "acceptance": acceptance,
            }
        )
        if np.isfinite(rhat) and rhat > rhat_threshold:
            msg = (
                f"R-hat for '{term}' is {rhat:.3f} (> {rhat_threshold}); "
                f"chains have not mixed."
            )
            warnings.warn(msg, PoorMixingWarning, stacklevel=2)
            records.append(WarningRecord("PoorMixingWarning", msg, term=term))

    return ConvergenceReport(
        table=pd.DataFrame(rows),
        level=level,
        estimator=estimator,
        interval=interval,
        rhat_threshold=rhat_threshold,
        n_chains=n_chains,
        n_draws=n_per_chain,
        acceptance_rates=tuple(float(r) for r in rates),
        warnings=tuple(records),
    )
