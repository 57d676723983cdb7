"""Search-strategy configuration for the Bayesian model selector.

Controls how :func:`~bayesian_norms.select_model` explores the space
of candidate term subsets when the caller does not pass ``strategy=``
explicitly.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_search_strategy`.
    2. The ``BAYESIAN_NORMS_SEARCH`` environment variable.
    3. ``"auto"``: exhaustive enumeration for small term sets,
       stochastic model-space search otherwise.

Valid strategy names are ``"exhaustive"``, ``"stochastic"`` and
``"auto"`` (case-insensitive).

Examples:
    Force stochastic search from the shell::

        export BAYESIAN_NORMS_SEARCH=stochastic

    Force full enumeration programmatically::

        import bayesian_norms
        bayesian_norms.set_search_strategy("exhaustive")

    Restore the default resolution::

        bayesian_norms.set_search_strategy("auto")
"""

from __future__ import annotations

import os

_VALID_STRATEGIES = {"exhaustive", "stochastic", "auto"}

# Sentinel indicating "no programmatic override has been set".
_strategy_override: str | None = None


def get_search_strategy() -> str:
    """Return the active search policy.

    Resolution order:
        1. Value set by :func:`set_search_strategy` (unless ``"auto"``).
        2. ``BAYESIAN_NORMS_SEARCH`` environment variable.
        3. ``"auto"``.

    Returns:
        ``"exhaustive"``, ``"stochastic"`` or ``"auto"``.
    """
    # 1. Programmatic override
    if _strategy_override is not None and _strategy_override != "auto":
        return _strategy_override

    # 2. Environment variable
    env = os.environ.get("BAYESIAN_NORMS_SEARCH", "").strip().lower()
    if env in ("exhaustive", "stochastic"):
        return env

    # 3. Default
    return "auto"


def set_search_strategy(name: str) -> None:
    """Override the search-strategy selection.

    Args:
        name: One of ``"exhaustive"``, ``"stochastic"``, or ``"auto"``
            (case-insensitive).  ``"auto"`` restores the default
            resolution order.

    Raises:
        ValueError: If *name* is not a recognised strategy.
    """
    global _strategy_override
    normalised = name.strip().lower()
    if normalised not in _VALID_STRATEGIES:
        raise ValueError(
            f"Unknown search strategy '{name}'. "
            f"Choose from: {sorted(_VALID_STRATEGIES)}"
        )
    _strategy_override = normalised


def resolve_search_strategy(
    strategy: str | None,
    n_terms: int,
    max_terms_exhaustive: int,
) -> str:
    """Turn a strategy request into ``"exhaustive"`` or ``"stochastic"``.

    Args:
        strategy: Explicit request, or ``None`` to use
            :func:`get_search_strategy`.
        n_terms: Number of candidate terms (intercept excluded).
        max_terms_exhaustive: Largest term count enumerated in full
            under ``"auto"``.

    Raises:
        ValueError: If *strategy* is not a recognised name.
    """
    policy = get_search_strategy() if strategy is None else strategy.strip().lower()
    if policy not in _VALID_STRATEGIES:
        raise ValueError(
            f"Unknown search strategy '{strategy}'. "
            f"Choose from: {sorted(_VALID_STRATEGIES)}"
        )
    if policy == "auto":
        return "exhaustive" if n_terms <= max_terms_exhaustive else "stochastic"
    return policy
