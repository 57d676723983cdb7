"""Likelihood family protocol and resolution logic.

The ``GLMFamily`` protocol defines everything the selector, sampler
and scorer need to know about an exponential-family outcome:

* the canonical inverse link mapping the linear predictor η to the
  distribution's mean parameter (Poisson ⇒ ``exp``, Binomial ⇒
  logistic, Gaussian ⇒ identity);
* the full log-likelihood, evaluated on the log scale only;
* the canonical-link score residual and working weights used by the
  Newton–Raphson posterior-mode search;
* the cumulative distribution function used for normative scoring.

Each concrete family is a frozen ``@dataclass``.  Nuisance parameters
(the Gaussian σ, the Binomial number of trials) are fields, so a
family instance is a complete, hashable description of the
likelihood.  ``calibrate`` returns a new instance with any nuisance
parameter estimated from the data; it never mutates.

The ``resolve_family`` helper maps a user-facing string (``"auto"``,
``"poisson"``, ``"gaussian"``, ``"binomial"``) to a family instance,
and ``register_family`` makes additional families available by name.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, replace
from typing import Any, Protocol, runtime_checkable

import numpy as np
import statsmodels.api as sm
from scipy import special
from scipy import stats as sp_stats
from sklearn.linear_model import LinearRegression
from sklearn.metrics import mean_squared_error
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import (
    PerfectSeparationWarning,
)

from .exceptions import NumericOverflowError

logger = logging.getLogger(__name__)

_LOG_2PI = float(np.log(2.0 * np.pi))


def _check_eta(eta: np.ndarray, family: str) -> None:
    if not np.all(np.isfinite(eta)):
        raise NumericOverflowError(family)


# ------------------------------------------------------------------ #
# GLMFamily protocol
# ------------------------------------------------------------------ #
#
# ``runtime_checkable`` enables isinstance() checks against the
# protocol at runtime, which resolve_family() and register_family()
# use to reject half-implemented families early.


@runtime_checkable
class GLMFamily(Protocol):
    """Interface that every likelihood family must implement.

    Attributes:
        name: Short identifier used in specifications and artifacts
            (e.g. ``"poisson"``).
        link: Name of the canonical link (``"log"``, ``"logit"``,
            ``"identity"``).
        discrete: Whether the outcome is integer-valued.  Discrete
            CDFs are step functions in the observed score.
        conjugate: Whether a Normal prior on a single coefficient
            yields a closed-form Normal full conditional, enabling
            exact Gibbs updates in the sampler.
    """

    @property
    def name(self) -> str: ...

    @property
    def link(self) -> str: ...

    @property
    def discrete(self) -> bool: ...

    @property
    def conjugate(self) -> bool: ...

    def params(self) -> dict[str, Any]:
        """Nuisance parameters needed to rebuild this instance."""
        ...

    def validate_y(self, y: np.ndarray) -> None:
        """Raise ``ValueError`` if *y* is unsuitable for this family."""
        ...

    def calibrate(self, X: np.ndarray, y: np.ndarray) -> GLMFamily:
        """Return an instance with nuisance parameters estimated from data."""
        ...

    def mean(self, eta: np.ndarray) -> np.ndarray:
        """Inverse link: linear predictor → mean parameter.

        Raises:
            NumericOverflowError: If any mean parameter is non-finite.
        """
        ...

    def link_fn(self, mu: np.ndarray) -> np.ndarray:
        """Link: mean parameter → linear predictor (warm starts)."""
        ...

    def log_likelihood(self, y: np.ndarray, eta: np.ndarray) -> float:
        """Total log-likelihood of *y* given linear predictor *eta*."""
        ...

    def working_terms(
        self,
        y: np.ndarray,
        eta: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Canonical-link score residual and Fisher weights.

        For a canonical link the log-likelihood gradient is
        ``Xᵀ r`` and its Hessian is ``−Xᵀ diag(w) X`` with
        ``(r, w)`` returned here.
        """
        ...

    def cdf(self, y: float | np.ndarray, mu: np.ndarray) -> np.ndarray:
        """``P(Y ≤ y)`` under mean parameter(s) *mu*."""
        ...

    def start_params(self, X: np.ndarray, y: np.ndarray) -> np.ndarray | None:
        """Maximum-likelihood coefficients, or ``None`` if the fit fails."""
        ...


def _glm_start(
    X: np.ndarray,
    endog: np.ndarray,
    family: Any,
    label: str,
) -> np.ndarray | None:
    """Fit an unpenalised statsmodels GLM for a warm start.

    Returns ``None`` on failure — the caller falls back to the
    working-response least-squares start.
    """
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=SmConvergenceWarning)
            warnings.filterwarnings("ignore", category=PerfectSeparationWarning)
            warnings.filterwarnings("ignore", category=RuntimeWarning)
            res = sm.GLM(endog, X, family=family).fit(disp=0)
        params = np.asarray(res.params, dtype=float)
    except Exception as exc:  # noqa: BLE001
        logger.debug("%s GLM warm start failed: %s", label, exc)
        return None
    if not np.all(np.isfinite(params)):
        return None
    return params


# ------------------------------------------------------------------ #
# PoissonFamily
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class PoissonFamily:
    """Poisson likelihood with the canonical log link.

    ℓ(β) = Σ [yᵢ ηᵢ − exp(ηᵢ) − log(yᵢ!)],   μ = exp(η).

    The typical outcome is an error or item count on a
    neuropsychological test.
    """

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def link(self) -> str:
        return "log"

    @property
    def discrete(self) -> bool:
        return True

    @property
    def conjugate(self) -> bool:
        return False

    def params(self) -> dict[str, Any]:
        return {}

    # Poisson requires non-negative values.  Floats that are whole
    # numbers are accepted; negative, NaN and fractional values are not.

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* contains non-negative integer-valued data."""
        if not np.issubdtype(np.asarray(y).dtype, np.number):
            msg = "PoissonFamily requires numeric Y values."
            raise ValueError(msg)
        if np.any(np.isnan(y)):
            msg = "PoissonFamily does not accept NaN values in Y."
            raise ValueError(msg)
        if np.any(y < 0):
            msg = "PoissonFamily requires non-negative Y values."
            raise ValueError(msg)
        if not np.allclose(y, np.round(y)):
            msg = "PoissonFamily requires integer-valued Y. Got non-integer values."
            raise ValueError(msg)

    def calibrate(self, X: np.ndarray, y: np.ndarray) -> PoissonFamily:  # noqa: ARG002
        return self

    def mean(self, eta: np.ndarray) -> np.ndarray:
        eta = np.asarray(eta, dtype=float)
        _check_eta(eta, self.name)
        with np.errstate(over="ignore"):
            mu = np.exp(eta)
        if not np.all(np.isfinite(mu)):
            raise NumericOverflowError(
                self.name,
                f"exp(eta) overflowed (max eta = {float(np.max(eta)):.4g}).",
            )
        return mu

    def link_fn(self, mu: np.ndarray) -> np.ndarray:
        return np.log(np.asarray(mu, dtype=float))

    def log_likelihood(self, y: np.ndarray, eta: np.ndarray) -> float:
        mu = self.mean(eta)
        return float(np.sum(y * eta - mu - special.gammaln(y + 1.0)))

    def working_terms(
        self,
        y: np.ndarray,
        eta: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        mu = self.mean(eta)
        return y - mu, mu

    def cdf(self, y: float | np.ndarray, mu: np.ndarray) -> np.ndarray:
        return np.asarray(sp_stats.poisson.cdf(np.floor(y), mu), dtype=float)

    def start_params(self, X: np.ndarray, y: np.ndarray) -> np.ndarray | None:
        return _glm_start(X, y, sm.families.Poisson(), "Poisson")


# ------------------------------------------------------------------ #
# BinomialFamily
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class BinomialFamily:
    """Binomial likelihood with the canonical logit link.

    yᵢ counts successes out of ``n_trials`` (``n_trials=1`` is the
    Bernoulli case).  The mean parameter is the success probability
    p = 1 / (1 + exp(−η)).

    ℓ(β) = Σ [yᵢ ηᵢ − n log(1 + exp(ηᵢ)) + log C(n, yᵢ)]

    ``log(1 + exp(η))`` is evaluated with ``np.logaddexp`` so that
    large |η| never overflows.
    """

    n_trials: int = 1

    def __post_init__(self) -> None:
        if int(self.n_trials) != self.n_trials or self.n_trials < 1:
            raise ValueError(
                f"n_trials must be a positive integer, got {self.n_trials!r}."
            )

    @property
    def name(self) -> str:
        return "binomial"

    @property
    def link(self) -> str:
        return "logit"

    @property
    def discrete(self) -> bool:
        return True

    @property
    def conjugate(self) -> bool:
        return False

    def params(self) -> dict[str, Any]:
        return {"n_trials": int(self.n_trials)}

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* holds integer success counts in ``[0, n_trials]``."""
        if not np.issubdtype(np.asarray(y).dtype, np.number):
            msg = "BinomialFamily requires numeric Y values."
            raise ValueError(msg)
        if np.any(np.isnan(y)):
            msg = "BinomialFamily does not accept NaN values in Y."
            raise ValueError(msg)
        if not np.allclose(y, np.round(y)):
            msg = "BinomialFamily requires integer-valued Y (success counts)."
            raise ValueError(msg)
        if np.any(y < 0) or np.any(y > self.n_trials):
            msg = f"BinomialFamily requires 0 <= Y <= n_trials ({self.n_trials})."
            raise ValueError(msg)

    def calibrate(self, X: np.ndarray, y: np.ndarray) -> BinomialFamily:  # noqa: ARG002
        return self

    def mean(self, eta: np.ndarray) -> np.ndarray:
        eta = np.asarray(eta, dtype=float)
        _check_eta(eta, self.name)
        return special.expit(eta)

    def link_fn(self, mu: np.ndarray) -> np.ndarray:
        return special.logit(np.asarray(mu, dtype=float))

    def log_likelihood(self, y: np.ndarray, eta: np.ndarray) -> float:
        eta = np.asarray(eta, dtype=float)
        _check_eta(eta, self.name)
        n = float(self.n_trials)
        log_choose = (
            special.gammaln(n + 1.0)
            - special.gammaln(y + 1.0)
            - special.gammaln(n - y + 1.0)
        )
        return float(np.sum(y * eta - n * np.logaddexp(0.0, eta) + log_choose))

    def working_terms(
        self,
        y: np.ndarray,
        eta: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        p = self.mean(eta)
        n = float(self.n_trials)
        return y - n * p, n * p * (1.0 - p)

    def cdf(self, y: float | np.ndarray, mu: np.ndarray) -> np.ndarray:
        return np.asarray(
            sp_stats.binom.cdf(np.floor(y), self.n_trials, mu), dtype=float
        )

    def start_params(self, X: np.ndarray, y: np.ndarray) -> np.ndarray | None:
        endog = np.column_stack([y, self.n_trials - y])
        return _glm_start(X, endog, sm.families.Binomial(), "Binomial")


# ------------------------------------------------------------------ #
# GaussianFamily
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class GaussianFamily:
    """Gaussian likelihood with the identity link and fixed σ.

    ℓ(β) = −½ Σ ((yᵢ − ηᵢ)/σ)² − n log σ − (n/2) log 2π

    σ is a nuisance parameter held fixed during sampling.  When
    constructed without one, :meth:`calibrate` plugs in the residual
    standard deviation of the least-squares fit on the full design
    (``RSS / (n − p)``), estimated once on the observed data.
    """

    sigma: float | None = None

    def __post_init__(self) -> None:
        if self.sigma is not None and not (np.isfinite(self.sigma) and self.sigma > 0):
            raise ValueError(f"sigma must be positive and finite, got {self.sigma!r}.")

    @property
    def name(self) -> str:
        return "gaussian"

    @property
    def link(self) -> str:
        return "identity"

    @property
    def discrete(self) -> bool:
        return False

    @property
    def conjugate(self) -> bool:
        return True

    def params(self) -> dict[str, Any]:
        return {"sigma": None if self.sigma is None else float(self.sigma)}

    def _require_sigma(self, method: str) -> float:
        if self.sigma is None:
            msg = (
                f"GaussianFamily.{method}() requires sigma; construct with "
                f"GaussianFamily(sigma=...) or call calibrate(X, y) first."
            )
            raise RuntimeError(msg)
        return float(self.sigma)

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* is numeric and finite."""
        if not np.issubdtype(np.asarray(y).dtype, np.number):
            msg = "GaussianFamily requires numeric Y values."
            raise ValueError(msg)
        if not np.all(np.isfinite(y)):
            msg = "GaussianFamily requires finite Y values."
            raise ValueError(msg)

    def calibrate(self, X: np.ndarray, y: np.ndarray) -> GaussianFamily:
        """Estimate σ from the least-squares residuals when not fixed."""
        if self.sigma is not None:
            return self
        n, p = X.shape
        model = LinearRegression(fit_intercept=False).fit(X, y)
        rss = float(mean_squared_error(y, model.predict(X)) * n)
        dof = max(n - p, 1)
        sigma = float(np.sqrt(rss / dof))
        if not sigma > 0:
            msg = "GaussianFamily cannot calibrate sigma: residual variance is zero."
            raise ValueError(msg)
        logger.debug("Calibrated Gaussian sigma = %.6g (dof=%d)", sigma, dof)
        return replace(self, sigma=sigma)

    def mean(self, eta: np.ndarray) -> np.ndarray:
        eta = np.asarray(eta, dtype=float)
        _check_eta(eta, self.name)
        return eta

    def link_fn(self, mu: np.ndarray) -> np.ndarray:
        return np.asarray(mu, dtype=float)

    def log_likelihood(self, y: np.ndarray, eta: np.ndarray) -> float:
        sigma = self._require_sigma("log_likelihood")
        mu = self.mean(eta)
        z = (y - mu) / sigma
        n = z.shape[0]
        return float(-0.5 * np.sum(z * z) - n * np.log(sigma) - 0.5 * n * _LOG_2PI)

    def working_terms(
        self,
        y: np.ndarray,
        eta: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        sigma = self._require_sigma("working_terms")
        mu = self.mean(eta)
        prec = 1.0 / (sigma * sigma)
        return (y - mu) * prec, np.full(mu.shape, prec)

    def cdf(self, y: float | np.ndarray, mu: np.ndarray) -> np.ndarray:
        sigma = self._require_sigma("cdf")
        return np.asarray(sp_stats.norm.cdf(y, loc=mu, scale=sigma), dtype=float)

    def start_params(self, X: np.ndarray, y: np.ndarray) -> np.ndarray | None:
        model = LinearRegression(fit_intercept=False).fit(X, y)
        return np.asarray(model.coef_, dtype=float).ravel()


# ------------------------------------------------------------------ #
# Family registry
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type] = {}
"""Registry mapping family name strings to concrete GLMFamily classes."""


def register_family(name: str, cls: type) -> None:
    """Register a concrete ``GLMFamily`` class under *name*.

    Args:
        name: Lookup key (e.g. ``"poisson"``).
        cls: A class implementing the ``GLMFamily`` protocol whose
            constructor works without arguments.

    Raises:
        TypeError: If *cls* does not satisfy the ``GLMFamily``
            protocol.
    """
    # runtime_checkable protocols with non-method members do not
    # support issubclass(); use isinstance() on a sentinel instance.
    try:
        instance = cls()
    except Exception:  # noqa: BLE001
        msg = f"{cls!r} could not be instantiated for protocol check."
        raise TypeError(msg) from None
    if not isinstance(instance, GLMFamily):
        msg = f"{cls!r} does not implement the GLMFamily protocol."
        raise TypeError(msg)
    _FAMILIES[name] = cls


def resolve_family(
    family: str | GLMFamily,
    y: np.ndarray | None = None,
    **params: Any,
) -> GLMFamily:
    """Resolve a family string or instance to a concrete ``GLMFamily``.

    Instances are returned as-is.  ``"auto"`` inspects *y*: a 0/1
    outcome maps to ``"binomial"``, a non-negative integer outcome to
    ``"poisson"``, anything else to ``"gaussian"``.

    Args:
        family: Family name or instance.
        y: Outcome vector, required only for ``"auto"``.
        **params: Nuisance parameters forwarded to the family
            constructor (``n_trials=``, ``sigma=``).

    Raises:
        ValueError: If *family* is ``"auto"`` without *y*, or names an
            unregistered family.
    """
    if isinstance(family, GLMFamily):
        return family
    if family == "auto":
        if y is None:
            msg = "resolve_family() requires 'y' when family='auto'."
            raise ValueError(msg)
        y = np.asarray(y, dtype=float)
        unique_y = np.unique(y)
        is_integer = bool(np.all(np.equal(np.mod(y, 1), 0)))
        if len(unique_y) <= 2 and np.all(np.isin(unique_y, [0, 1])):
            family = "binomial"
        elif is_integer and bool(np.all(y >= 0)):
            family = "poisson"
        else:
            family = "gaussian"
        logger.debug("family='auto' resolved to %r", family)

    if family not in _FAMILIES:
        available = ", ".join(sorted(_FAMILIES)) or "(none registered)"
        msg = f"Unknown family {family!r}.  Available families: {available}."
        raise ValueError(msg)

    params = {k: v for k, v in params.items() if v is not None}
    instance: GLMFamily = _FAMILIES[family](**params)
    return instance


# ------------------------------------------------------------------ #
# Register built-in families
# ------------------------------------------------------------------ #

register_family("poisson", PoissonFamily)
register_family("binomial", BinomialFamily)
register_family("gaussian", GaussianFamily)
