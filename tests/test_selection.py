"""Tests for Bayesian variable selection and the inclusion decision rule."""

import itertools
import json
import logging

import numpy as np
import pandas as pd
import pytest
from scipy import special

import bayesian_norms.selection as selection_mod
from bayesian_norms.design import DesignMatrix, build_design_matrix
from bayesian_norms.exceptions import DegenerateModelError, NumericOverflowError
from bayesian_norms.selection import log_model_prior, recommend_terms, select_model

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def poisson_data(rng):
    n = 300
    df = pd.DataFrame({"a": rng.standard_normal(n), "b": rng.standard_normal(n)})
    y = rng.poisson(np.exp(0.5 + 0.6 * df["a"].to_numpy())).astype(float)
    return df, y


@pytest.fixture()
def design(poisson_data):
    df, _ = poisson_data
    return build_design_matrix(df, ["a", "b"])


# ------------------------------------------------------------------ #
# Model prior
# ------------------------------------------------------------------ #


class TestModelPrior:
    @pytest.mark.parametrize("concentration", [0.5, 1.0, 3.0])
    def test_sums_to_one_over_all_subsets(self, concentration):
        k = 4
        total = sum(
            special.comb(k, s) * np.exp(log_model_prior(s, k, concentration))
            for s in range(k + 1)
        )
        assert total == pytest.approx(1.0)

    def test_null_model_share(self):
        k = 5
        assert np.exp(log_model_prior(0, k, 1.0)) == pytest.approx(1 / (k + 1))

    def test_null_model_is_most_probable_single_model(self):
        k = 6
        priors = [log_model_prior(s, k, 1.0) for s in range(k + 1)]
        assert int(np.argmax(priors)) in (0, k)
        assert priors[0] > priors[k // 2]

    def test_larger_concentration_favours_sparsity(self):
        assert log_model_prior(0, 5, 4.0) > log_model_prior(0, 5, 1.0)


# ------------------------------------------------------------------ #
# Decision rule
# ------------------------------------------------------------------ #


class TestRecommendTerms:
    order = ["a", "b", "c", "a:b", "a:c", "b:c"]

    def test_threshold(self):
        pips = {"a": 0.9, "b": 0.3, "c": 0.6, "a:b": 0.1, "a:c": 0.2, "b:c": 0.0}
        assert recommend_terms(pips, self.order, 0.5) == ["a", "c"]

    def test_interaction_pulls_in_constituents(self):
        pips = {"a": 0.9, "b": 0.2, "c": 0.1, "a:b": 0.7, "a:c": 0.0, "b:c": 0.0}
        assert recommend_terms(pips, self.order, 0.5) == ["a", "b", "a:b"]

    def test_strictly_greater(self):
        assert recommend_terms({"a": 0.5}, ["a"], 0.5) == []

    def test_invalid_threshold(self):
        with pytest.raises(ValueError, match="threshold"):
            recommend_terms({"a": 0.5}, ["a"], 1.5)


# ------------------------------------------------------------------ #
# Exhaustive selection
# ------------------------------------------------------------------ #


class TestExhaustive:
    def test_model_probabilities_sum_to_one(self, design, poisson_data):
        _, y = poisson_data
        result = select_model(design, y, strategy="exhaustive")
        assert result.model_probabilities["probability"].sum() == pytest.approx(1.0)

    def test_only_heredity_valid_models(self, design, poisson_data):
        _, y = poisson_data
        result = select_model(design, y, strategy="exhaustive")
        # {}, {a}, {b}, {a,b}, {a,b,a:b}
        assert result.n_models_evaluated == 5
        for terms in result.model_probabilities["terms"]:
            if "a:b" in terms:
                assert {"a", "b"} <= set(terms)

    def test_pips_identify_signal(self, design, poisson_data):
        _, y = poisson_data
        pips = select_model(design, y, strategy="exhaustive").pips
        assert pips["a"] > 0.95
        assert pips["b"] < 0.5
        assert pips["a:b"] <= pips["b"] + 1e-12

    def test_pip_is_sum_over_containing_models(self, design, poisson_data):
        _, y = poisson_data
        result = select_model(design, y, strategy="exhaustive")
        mp = result.model_probabilities
        for term, pip in result.pips.items():
            expected = mp.loc[mp["terms"].map(lambda t: term in t), "probability"].sum()
            assert pip == pytest.approx(expected)

    def test_tables_sorted_descending(self, design, poisson_data):
        _, y = poisson_data
        result = select_model(design, y, strategy="exhaustive")
        assert result.pip_table["pip"].is_monotonic_decreasing
        assert result.model_probabilities["probability"].is_monotonic_decreasing

    def test_recommended_model(self, design, poisson_data):
        _, y = poisson_data
        result = select_model(design, y, strategy="exhaustive")
        assert result.recommended.terms == ("a",)
        assert result.recommend(0.0).terms == ("a", "b", "a:b")

    def test_parallel_matches_serial(self, design, poisson_data):
        _, y = poisson_data
        serial = select_model(design, y, strategy="exhaustive", n_jobs=1)
        parallel = select_model(design, y, strategy="exhaustive", n_jobs=2)
        pd.testing.assert_frame_equal(serial.pip_table, parallel.pip_table)

    def test_family_auto(self, design, poisson_data):
        _, y = poisson_data
        assert select_model(design, y, family="auto").family.name == "poisson"

    def test_to_dict_is_json_serialisable(self, design, poisson_data):
        _, y = poisson_data
        payload = select_model(design, y, strategy="exhaustive").to_dict()
        json.dumps(payload)
        assert payload["recommended"]["terms"] == ["a"]
        assert payload["family"] == "poisson"


# ------------------------------------------------------------------ #
# Stochastic selection
# ------------------------------------------------------------------ #


class TestStochastic:
    def test_agrees_with_exhaustive(self, design, poisson_data):
        _, y = poisson_data
        exact = select_model(design, y, strategy="exhaustive").pips
        approx = select_model(
            design, y, strategy="stochastic", n_iter=2000, random_state=0
        )
        assert approx.strategy == "stochastic"
        for term, pip in exact.items():
            assert approx.pips[term] == pytest.approx(pip, abs=0.03)

    def test_visited_probabilities_sum_to_one(self, design, poisson_data):
        _, y = poisson_data
        result = select_model(
            design, y, strategy="stochastic", n_iter=500, random_state=1
        )
        assert result.model_probabilities["probability"].sum() == pytest.approx(1.0)
        assert result.n_models_evaluated <= 5

    def test_deterministic_given_seed(self, design, poisson_data):
        _, y = poisson_data
        r1 = select_model(design, y, strategy="stochastic", n_iter=300, random_state=7)
        r2 = select_model(design, y, strategy="stochastic", n_iter=300, random_state=7)
        pd.testing.assert_frame_equal(r1.pip_table, r2.pip_table)

    def test_auto_uses_stochastic_above_limit(self, design, poisson_data):
        _, y = poisson_data
        result = select_model(
            design, y, strategy="auto", max_terms_exhaustive=2, n_iter=200,
            random_state=0,
        )
        assert result.strategy == "stochastic"

    @pytest.mark.parametrize("strategy", ["stochastic", "exhaustive"])
    def test_intercept_only_design(self, rng, strategy):
        design = DesignMatrix.from_array(np.ones((30, 1)), ["Intercept"])
        y = rng.poisson(3.0, 30).astype(float)
        result = select_model(design, y, strategy=strategy, random_state=0)
        assert result.n_models_evaluated == 1
        assert result.recommended.terms == ()
        assert result.pip_table.empty
        assert result.model_probabilities["probability"].tolist() == [1.0]

    def test_intercept_only_from_environment(self, rng, monkeypatch):
        monkeypatch.setenv("BAYESIAN_NORMS_SEARCH", "stochastic")
        design = DesignMatrix.from_array(np.ones((30, 1)), ["Intercept"])
        y = rng.poisson(3.0, 30).astype(float)
        result = select_model(design, y, random_state=0)
        assert result.strategy == "stochastic"
        assert result.recommended.terms == ()

    def test_visit_frequencies_logged(self, design, poisson_data, caplog):
        _, y = poisson_data
        with caplog.at_level(logging.DEBUG, logger="bayesian_norms.selection"):
            select_model(design, y, strategy="stochastic", n_iter=200, random_state=0)
        messages = [r.getMessage() for r in caplog.records]
        visits = [m for m in messages if "visit frequencies" in m]
        assert len(visits) == 1
        assert "'a':" in visits[0] and "'a:b':" in visits[0]


# ------------------------------------------------------------------ #
# Failures
# ------------------------------------------------------------------ #


class TestFailures:
    def test_zero_variance_outcome(self, design):
        with pytest.raises(DegenerateModelError, match="zero variance") as exc_info:
            select_model(design, np.full(design.n_observations, 3.0))
        assert exc_info.value.field == "y"

    def test_rank_deficient_design(self, rng):
        n = 50
        a = rng.standard_normal(n)
        X = np.column_stack([np.ones(n), a, 2.0 * a])
        design = DesignMatrix.from_array(X, ["Intercept", "a", "b"])
        y = rng.poisson(2.0, n).astype(float)
        with pytest.raises(DegenerateModelError, match="rank deficient") as exc_info:
            select_model(design, y)
        assert exc_info.value.field == "b"

    def test_length_mismatch(self, design):
        with pytest.raises(ValueError, match="observation"):
            select_model(design, np.ones(3))

    def test_bad_concentration(self, design, poisson_data):
        _, y = poisson_data
        with pytest.raises(ValueError, match="concentration"):
            select_model(design, y, concentration=0.0)

    def test_failed_model_gets_zero_probability(self, design, poisson_data, monkeypatch):
        _, y = poisson_data
        original = selection_mod.posterior_mode

        def flaky(family, X, y, precisions, **kwargs):
            if X.shape[1] == 4:
                raise NumericOverflowError(family.name)
            return original(family, X, y, precisions, **kwargs)

        monkeypatch.setattr(selection_mod, "posterior_mode", flaky)
        result = select_model(design, y, strategy="exhaustive")
        assert result.failed_models == (("a", "b", "a:b"),)
        mp = result.model_probabilities
        full = mp[mp["terms"].map(lambda t: t == ("a", "b", "a:b"))]
        assert float(full["probability"].iloc[0]) == 0.0
        assert mp["probability"].sum() == pytest.approx(1.0)

    def test_all_models_failing(self, design, poisson_data, monkeypatch):
        _, y = poisson_data

        def always_fails(family, X, y, precisions, **kwargs):
            raise NumericOverflowError(family.name)

        monkeypatch.setattr(selection_mod, "posterior_mode", always_fails)
        with pytest.raises(DegenerateModelError, match="No candidate model"):
            select_model(design, y, strategy="exhaustive")


def test_exhaustive_model_count_grows_with_heredity():
    # Three main effects: 2^3 main-effect subsets, each allowing only
    # the interactions whose constituents are present.
    rng = np.random.default_rng(0)
    df = pd.DataFrame(rng.standard_normal((60, 3)), columns=["a", "b", "c"])
    y = rng.poisson(np.exp(0.3 + 0.5 * df["a"])).astype(float)
    design = build_design_matrix(df, ["a", "b", "c"])
    result = select_model(design, y, strategy="exhaustive")
    expected = 0
    for mains in itertools.chain.from_iterable(
        itertools.combinations("abc", r) for r in range(4)
    ):
        pairs = len(list(itertools.combinations(mains, 2)))
        expected += 2**pairs
    assert result.n_models_evaluated == expected
