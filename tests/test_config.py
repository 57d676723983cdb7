"""Tests for the search-strategy configuration system."""

import os

import pytest

from bayesian_norms._config import (
    get_search_strategy,
    resolve_search_strategy,
    set_search_strategy,
)


class TestGetSearchStrategy:
    """Tests for get_search_strategy() resolution order."""

    def setup_method(self):
        """Reset state before each test."""
        import bayesian_norms._config as _cfg
        _cfg._strategy_override = None
        os.environ.pop("BAYESIAN_NORMS_SEARCH", None)

    def teardown_method(self):
        """Reset state after each test."""
        import bayesian_norms._config as _cfg
        _cfg._strategy_override = None
        os.environ.pop("BAYESIAN_NORMS_SEARCH", None)

    def test_default_is_auto(self):
        assert get_search_strategy() == "auto"

    def test_env_var_overrides_default(self):
        os.environ["BAYESIAN_NORMS_SEARCH"] = "stochastic"
        assert get_search_strategy() == "stochastic"

    def test_env_var_case_insensitive(self):
        os.environ["BAYESIAN_NORMS_SEARCH"] = "Exhaustive"
        assert get_search_strategy() == "exhaustive"

    def test_unknown_env_var_ignored(self):
        os.environ["BAYESIAN_NORMS_SEARCH"] = "genetic"
        assert get_search_strategy() == "auto"

    def test_programmatic_override_wins_over_env(self):
        os.environ["BAYESIAN_NORMS_SEARCH"] = "stochastic"
        set_search_strategy("exhaustive")
        assert get_search_strategy() == "exhaustive"

    def test_auto_restores_default(self):
        set_search_strategy("stochastic")
        assert get_search_strategy() == "stochastic"
        set_search_strategy("auto")
        assert get_search_strategy() == "auto"


class TestSetSearchStrategy:
    """Tests for set_search_strategy() validation."""

    def setup_method(self):
        import bayesian_norms._config as _cfg
        _cfg._strategy_override = None

    def teardown_method(self):
        import bayesian_norms._config as _cfg
        _cfg._strategy_override = None

    def test_accepts_valid_names(self):
        for name in ("exhaustive", "stochastic", "auto"):
            set_search_strategy(name)  # should not raise

    def test_case_insensitive(self):
        set_search_strategy("STOCHASTIC")
        assert get_search_strategy() == "stochastic"

    def test_rejects_invalid_name(self):
        with pytest.raises(ValueError, match="Unknown search strategy"):
            set_search_strategy("genetic")


class TestResolveSearchStrategy:
    def setup_method(self):
        import bayesian_norms._config as _cfg
        _cfg._strategy_override = None
        os.environ.pop("BAYESIAN_NORMS_SEARCH", None)

    def teardown_method(self):
        import bayesian_norms._config as _cfg
        _cfg._strategy_override = None
        os.environ.pop("BAYESIAN_NORMS_SEARCH", None)

    def test_auto_small_k_is_exhaustive(self):
        assert resolve_search_strategy("auto", 10, 20) == "exhaustive"

    def test_auto_boundary_is_exhaustive(self):
        assert resolve_search_strategy("auto", 20, 20) == "exhaustive"

    def test_auto_large_k_is_stochastic(self):
        assert resolve_search_strategy("auto", 21, 20) == "stochastic"

    def test_explicit_request_wins(self):
        assert resolve_search_strategy("stochastic", 3, 20) == "stochastic"

    def test_none_defers_to_config(self):
        set_search_strategy("stochastic")
        assert resolve_search_strategy(None, 3, 20) == "stochastic"

    def test_none_with_env_var(self):
        os.environ["BAYESIAN_NORMS_SEARCH"] = "stochastic"
        assert resolve_search_strategy(None, 3, 20) == "stochastic"

    def test_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown search strategy"):
            resolve_search_strategy("random", 3, 20)
