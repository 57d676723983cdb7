"""MCMC sampling of GLM coefficients for a fixed model specification.

Every chain walks through the same sequence of phases::

    INITIALIZED → ADAPTING → BURNING_IN → SAMPLING → DONE

* **INITIALIZED** — coefficients drawn from N(0, 0.1²) with the
  chain's own generator, so chains start from distinct points.
* **ADAPTING** — ``n_adapt`` iterations in batches of 50.  After each
  batch the random-walk step of coefficient *j* is multiplied by
  ``exp(rate_j − target_acceptance)``.  Nothing is retained.
* **BURNING_IN** — ``n_burn`` iterations with frozen step sizes,
  discarded.
* **SAMPLING** — ``n_samples`` iterations; iteration *i* (1-based) is
  retained when ``i % thin == 0``, giving ``floor(n_samples / thin)``
  draws per chain.  Rejected proposals advance the counter too.
* **DONE** — the retained draws are frozen into a read-only array.

Per-iteration update
~~~~~~~~~~~~~~~~~~~~
Each iteration sweeps the coefficients in order.

* *Metropolis* (Poisson, Binomial): propose βⱼ' = βⱼ + sⱼ·ε with
  ε ~ N(0, 1) and accept with probability
  min(1, exp(Δℓ + Δ log p)).  The proposal is symmetric, so the
  proposal ratio is one.  All densities are evaluated on the log
  scale.
* *Gibbs* (Gaussian with known σ): the full conditional of βⱼ under a
  Normal prior is Normal with precision ``‖xⱼ‖²/σ² + τⱼ``; it is drawn
  exactly, so every update is accepted.

Initial step sizes are ``2.4 / √Hⱼⱼ`` where H is the negative Hessian
of the log posterior at its mode (the optimal single-component
random-walk scale for a Normal target), falling back to 0.1 when the
mode search fails.

Chains share nothing mutable.  They run under
``joblib.Parallel(prefer="threads")`` and are joined before pooling;
a caller-supplied :class:`threading.Event` aborts every chain between
iterations.
"""

from __future__ import annotations

import enum
import logging
import threading
import warnings
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field, replace
from typing import Any

import numpy as np
from joblib import Parallel, delayed

from ._compat import _as_outcome_array
from ._laplace import posterior_mode
from ._results import PosteriorSamples, WarningRecord
from .design import DesignMatrix
from .exceptions import (
    NonConvergenceWarning,
    NumericOverflowError,
    SamplingCancelledError,
)
from .families import GLMFamily
from .specification import ModelSpecification, PriorSpecification, _coerce_prior

logger = logging.getLogger(__name__)

_ADAPT_BATCH = 50
_INIT_SD = 0.1
_FALLBACK_STEP = 0.1
_STEP_SCALE = 2.4
_UPDATE_KINDS = ("auto", "metropolis", "gibbs")


class ChainPhase(enum.Enum):
    """Lifecycle of a single chain."""

    INITIALIZED = "initialized"
    ADAPTING = "adapting"
    BURNING_IN = "burning_in"
    SAMPLING = "sampling"
    DONE = "done"


# ------------------------------------------------------------------ #
# Configuration
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class SamplerConfig:
    """Validated sampler options.

    Attributes:
        n_chains: Independent chains (≥ 1).
        n_adapt: Step-size adaptation iterations (≥ 0).
        n_burn: Burn-in iterations (≥ 0).
        n_samples: Sampling iterations per chain (≥ 1), before
            thinning.
        thin: Keep every ``thin``-th sampling iteration (≥ 1).
        prior_precision: Shared Normal prior precision (> 0).
        seeds: One seed per chain.  Overrides *random_state*.
        random_state: Root seed from which per-chain seeds are spawned
            with :class:`numpy.random.SeedSequence`.
        target_acceptance: Acceptance rate targeted during adaptation.
        acceptance_band: ``(low, high)`` post-adaptation acceptance
            rates outside which :class:`NonConvergenceWarning` fires.
        update: ``"auto"`` (Gibbs where the family is conjugate,
            Metropolis otherwise), ``"metropolis"`` or ``"gibbs"``.
        n_jobs: Parallel workers for the chains (joblib semantics).
    """

    n_chains: int = 3
    n_adapt: int = 1000
    n_burn: int = 1000
    n_samples: int = 5000
    thin: int = 1
    prior_precision: float = 0.01
    seeds: Sequence[int] | None = None
    random_state: int | None = None
    target_acceptance: float = 0.44
    acceptance_band: tuple[float, float] = (0.15, 0.7)
    update: str = "auto"
    n_jobs: int = 1

    def __post_init__(self) -> None:
        checks = (
            ("n_chains", self.n_chains, 1),
            ("n_adapt", self.n_adapt, 0),
            ("n_burn", self.n_burn, 0),
            ("n_samples", self.n_samples, 1),
            ("thin", self.thin, 1),
        )
        for name, value, minimum in checks:
            if isinstance(value, bool) or int(value) != value or value < minimum:
                raise ValueError(
                    f"{name} must be an integer >= {minimum}, got {value!r}."
                )
        if not (np.isfinite(self.prior_precision) and self.prior_precision > 0):
            raise ValueError(
                f"prior_precision must be positive and finite, got "
                f"{self.prior_precision!r}."
            )
        if self.seeds is not None:
            seeds = tuple(int(s) for s in self.seeds)
            if len(seeds) != self.n_chains:
                raise ValueError(
                    f"seeds must provide one seed per chain: got {len(seeds)} "
                    f"seed(s) for n_chains={self.n_chains}."
                )
            object.__setattr__(self, "seeds", seeds)
        if not 0.0 < self.target_acceptance < 1.0:
            raise ValueError(
                f"target_acceptance must lie in (0, 1), got {self.target_acceptance!r}."
            )
        low, high = self.acceptance_band
        if not 0.0 <= low < high <= 1.0:
            raise ValueError(
                f"acceptance_band must satisfy 0 <= low < high <= 1, got "
                f"{self.acceptance_band!r}."
            )
        object.__setattr__(self, "acceptance_band", (float(low), float(high)))
        if self.update not in _UPDATE_KINDS:
            raise ValueError(
                f"update must be one of {list(_UPDATE_KINDS)}, got {self.update!r}."
            )
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero.")

    @property
    def n_retained(self) -> int:
        """Draws kept per chain."""
        return self.n_samples // self.thin

    def chain_seeds(self) -> list[int]:
        """Per-chain integer seeds.

        Explicit *seeds* are returned unchanged.  Otherwise seeds are
        spawned from ``SeedSequence(random_state)``; with
        ``random_state=None`` fresh OS entropy is used, but the spawned
        seeds are still returned so a run can be reproduced.
        """
        if self.seeds is not None:
            return list(self.seeds)
        children = np.random.SeedSequence(self.random_state).spawn(self.n_chains)
        return [int(c.generate_state(1, dtype=np.uint64)[0]) for c in children]

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["seeds"] = None if self.seeds is None else list(self.seeds)
        out["acceptance_band"] = list(self.acceptance_band)
        return out


# ------------------------------------------------------------------ #
# Chain execution
# ------------------------------------------------------------------ #


@dataclass
class _ChainState:
    """Mutable state owned by exactly one chain."""

    beta: np.ndarray
    eta: np.ndarray
    log_lik: float
    steps: np.ndarray
    phase: ChainPhase = ChainPhase.INITIALIZED
    iteration: int = 0
    proposed: int = 0
    accepted: int = 0
    batch_accepts: np.ndarray = field(default_factory=lambda: np.zeros(0))


@dataclass
class _ChainOutcome:
    index: int
    seed: int
    phase: ChainPhase
    draws: np.ndarray | None = None
    acceptance_rate: float = float("nan")
    error: BaseException | None = None
    cancelled: bool = False


class _Cancelled(Exception):
    """Raised inside a chain when the cancellation event is observed."""


def _metropolis_sweep(
    state: _ChainState,
    family: GLMFamily,
    X: np.ndarray,
    y: np.ndarray,
    precisions: np.ndarray,
    rng: np.random.Generator,
) -> None:
    for j in range(state.beta.shape[0]):
        delta = state.steps[j] * rng.standard_normal()
        old = state.beta[j]
        new = old + delta
        eta_new = state.eta + delta * X[:, j]
        # Overflow here propagates: fatal to this chain.
        log_lik_new = family.log_likelihood(y, eta_new)
        log_ratio = (log_lik_new - state.log_lik) - 0.5 * precisions[j] * (
            new * new - old * old
        )
        state.proposed += 1
        if log_ratio >= 0.0 or np.log(rng.random()) < log_ratio:
            state.beta[j] = new
            state.eta = eta_new
            state.log_lik = log_lik_new
            state.accepted += 1
            state.batch_accepts[j] += 1


def _gibbs_sweep(
    state: _ChainState,
    family: GLMFamily,
    X: np.ndarray,
    y: np.ndarray,
    precisions: np.ndarray,
    rng: np.random.Generator,
    col_sq: np.ndarray,
) -> None:
    sigma2 = float(family.params()["sigma"]) ** 2
    for j in range(state.beta.shape[0]):
        partial = y - state.eta + X[:, j] * state.beta[j]
        prec = col_sq[j] / sigma2 + precisions[j]
        mean = (X[:, j] @ partial) / sigma2 / prec
        new = mean + rng.standard_normal() / np.sqrt(prec)
        state.eta = state.eta + (new - state.beta[j]) * X[:, j]
        state.beta[j] = new
        state.proposed += 1
        state.accepted += 1
    state.log_lik = family.log_likelihood(y, state.eta)


def _run_chain(
    index: int,
    seed: int,
    family: GLMFamily,
    X: np.ndarray,
    y: np.ndarray,
    precisions: np.ndarray,
    init_steps: np.ndarray,
    config: SamplerConfig,
    use_gibbs: bool,
    cancel_event: threading.Event | None,
) -> _ChainOutcome:
    rng = np.random.default_rng(seed)
    d = X.shape[1]
    beta = rng.normal(0.0, _INIT_SD, size=d)
    state = _ChainState(
        beta=beta,
        eta=X @ beta,
        log_lik=0.0,
        steps=np.array(init_steps, dtype=float),
        batch_accepts=np.zeros(d),
    )
    col_sq = np.einsum("ij,ij->j", X, X)
    draws = np.empty((config.n_retained, d))

    def sweep() -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled
        if use_gibbs:
            _gibbs_sweep(state, family, X, y, precisions, rng, col_sq)
        else:
            _metropolis_sweep(state, family, X, y, precisions, rng)
        state.iteration += 1

    def enter(phase: ChainPhase) -> None:
        logger.debug("Chain %d: %s -> %s", index, state.phase.value, phase.value)
        state.phase = phase

    try:
        state.log_lik = family.log_likelihood(y, state.eta)

        enter(ChainPhase.ADAPTING)
        for i in range(config.n_adapt):
            sweep()
            if not use_gibbs and (i + 1) % _ADAPT_BATCH == 0:
                rates = state.batch_accepts / _ADAPT_BATCH
                state.steps *= np.exp(rates - config.target_acceptance)
                state.batch_accepts[:] = 0.0
        if config.n_adapt and not use_gibbs:
            logger.debug("Chain %d adapted step sizes: %s", index, np.round(state.steps, 5))

        state.proposed = state.accepted = 0
        enter(ChainPhase.BURNING_IN)
        for _ in range(config.n_burn):
            sweep()

        enter(ChainPhase.SAMPLING)
        kept = 0
        for i in range(1, config.n_samples + 1):
            sweep()
            if i % config.thin == 0:
                draws[kept] = state.beta
                kept += 1
    except _Cancelled:
        logger.debug("Chain %d cancelled during %s", index, state.phase.value)
        return _ChainOutcome(index, seed, state.phase, cancelled=True)
    except NumericOverflowError as exc:
        logger.debug("Chain %d failed during %s: %s", index, state.phase.value, exc)
        return _ChainOutcome(index, seed, state.phase, error=exc)

    enter(ChainPhase.DONE)
    draws.setflags(write=False)
    rate = state.accepted / state.proposed if state.proposed else float("nan")
    return _ChainOutcome(index, seed, ChainPhase.DONE, draws=draws, acceptance_rate=rate)


# ------------------------------------------------------------------ #
# Public entry point
# ------------------------------------------------------------------ #


def _initial_steps(
    family: GLMFamily,
    X: np.ndarray,
    y: np.ndarray,
    precisions: np.ndarray,
) -> np.ndarray:
    try:
        mode = posterior_mode(family, X, y, precisions)
        steps = _STEP_SCALE * mode.proposal_scales()
    except (NumericOverflowError, np.linalg.LinAlgError) as exc:
        logger.debug("Posterior mode unavailable for step sizes: %s", exc)
        return np.full(X.shape[1], _FALLBACK_STEP)
    return np.where(np.isfinite(steps) & (steps > 0), steps, _FALLBACK_STEP)


def sample_posterior(
    design_or_X: DesignMatrix | np.ndarray,
    y: np.ndarray,
    spec: ModelSpecification,
    config: SamplerConfig | None = None,
    *,
    prior: PriorSpecification | None = None,
    cancel_event: threading.Event | None = None,
    **config_overrides: Any,
) -> PosteriorSamples:
    """Draw posterior coefficient samples for *spec*.

    Args:
        design_or_X: Full :class:`DesignMatrix` (restricted to
            ``spec.columns``), or a numeric matrix whose columns
            already follow ``spec.columns``.
        y: Outcome vector.
        spec: Model specification.  Its family fixes the likelihood.
        config: Sampler options.  Keyword overrides are applied on top
            (``sample_posterior(..., n_chains=4)``).
        prior: Coefficient prior.  Defaults to a shared precision of
            ``config.prior_precision``.
        cancel_event: Set to abort every chain between iterations.

    Returns:
        :class:`~bayesian_norms._results.PosteriorSamples` holding the
        chains that reached ``DONE``.

    Raises:
        SamplingCancelledError: If *cancel_event* was set before every
            chain finished.  ``.completed`` holds the finished chains.
        NumericOverflowError: If every chain failed numerically.
        ValueError: On invalid options or mismatched inputs.
    """
    config = config or SamplerConfig()
    if config_overrides:
        config = replace(config, **config_overrides)

    if isinstance(design_or_X, DesignMatrix):
        X = design_or_X.subset(spec.columns)
    else:
        X = np.asarray(design_or_X, dtype=float)
        if X.ndim != 2 or X.shape[1] != spec.n_coefficients:
            raise ValueError(
                f"X of shape {X.shape} does not match the "
                f"{spec.n_coefficients} coefficient(s) of the specification."
            )
    y = _as_outcome_array(y)
    if y.shape[0] != X.shape[0]:
        raise ValueError(
            f"y has {y.shape[0]} observation(s) but X has {X.shape[0]}."
        )
    family = spec.family
    family.validate_y(y)
    family = family.calibrate(X, y)

    update = config.update
    if update == "auto":
        update = "gibbs" if family.conjugate else "metropolis"
    elif update == "gibbs" and not family.conjugate:
        raise ValueError(
            f"Gibbs updates require a conjugate family; {family.name!r} is not."
        )
    use_gibbs = update == "gibbs"

    prior = _coerce_prior(prior, config.prior_precision)
    precisions = prior.precisions(spec.columns)
    init_steps = (
        np.ones(X.shape[1]) if use_gibbs else _initial_steps(family, X, y, precisions)
    )
    seeds = config.chain_seeds()
    logger.debug(
        "Sampling %d chain(s) of %s model %s with %s updates",
        config.n_chains,
        family.name,
        list(spec.columns),
        update,
    )

    outcomes: list[_ChainOutcome] = list(
        Parallel(n_jobs=config.n_jobs, prefer="threads")(
            delayed(_run_chain)(
                i, seed, family, X, y, precisions, init_steps, config,
                use_gibbs, cancel_event,
            )
            for i, seed in enumerate(seeds)
        )
    )

    done = [o for o in outcomes if o.phase is ChainPhase.DONE]
    records: list[WarningRecord] = []
    for o in outcomes:
        if o.error is not None:
            msg = f"Chain {o.index} discarded: {o.error}"
            warnings.warn(msg, RuntimeWarning, stacklevel=2)
            records.append(
                WarningRecord(type(o.error).__name__, msg, chain=o.index)
            )
    if not use_gibbs:
        low, high = config.acceptance_band
        for o in done:
            if not low <= o.acceptance_rate <= high:
                msg = (
                    f"Chain {o.index} acceptance rate {o.acceptance_rate:.3f} "
                    f"is outside [{low}, {high}] after adaptation."
                )
                warnings.warn(msg, NonConvergenceWarning, stacklevel=2)
                records.append(
                    WarningRecord("NonConvergenceWarning", msg, chain=o.index)
                )

    def build() -> PosteriorSamples:
        return PosteriorSamples(
            chains=tuple(o.draws for o in done),
            terms=spec.columns,
            family=family,
            seeds=tuple(o.seed for o in done),
            acceptance_rates=tuple(float(o.acceptance_rate) for o in done),
            warnings=tuple(records),
        )

    if any(o.cancelled for o in outcomes):
        raise SamplingCancelledError(build() if done else None)
    if not done:
        raise next(o.error for o in outcomes if o.error is not None)
    return build()
