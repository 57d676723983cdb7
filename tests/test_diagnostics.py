"""Tests for convergence diagnostics and posterior summaries."""

import json

import numpy as np
import pytest

from bayesian_norms._results import PosteriorSamples, WarningRecord
from bayesian_norms.diagnostics import (
    autocorrelation,
    credible_interval,
    effective_sample_size,
    point_estimate,
    potential_scale_reduction,
    summarize_posterior,
)
from bayesian_norms.exceptions import PoorMixingWarning
from bayesian_norms.families import PoissonFamily

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


def _ar1(rng, n, phi, n_chains=1):
    out = np.empty((n_chains, n))
    for c in range(n_chains):
        x = 0.0
        for i in range(n):
            x = phi * x + rng.standard_normal()
            out[c, i] = x
    return out


def _posterior(chains, terms=("Intercept", "x"), **kwargs):
    return PosteriorSamples(
        chains=tuple(chains), terms=terms, family=PoissonFamily(), **kwargs
    )


# ------------------------------------------------------------------ #
# Autocorrelation & ESS
# ------------------------------------------------------------------ #


class TestAutocorrelation:
    def test_lag_zero_is_one(self, rng):
        acf = autocorrelation(rng.standard_normal(200), max_lag=10)
        assert acf.shape == (11,)
        assert acf[0] == pytest.approx(1.0)

    def test_ar1_lag_one(self, rng):
        x = _ar1(rng, 5000, 0.8)[0]
        assert autocorrelation(x, 1)[1] == pytest.approx(0.8, abs=0.05)

    def test_constant_chain(self):
        acf = autocorrelation(np.ones(10), 3)
        np.testing.assert_array_equal(acf, [1.0, 0.0, 0.0, 0.0])

    def test_empty_rejected(self):
        with pytest.raises(ValueError, match="at least one draw"):
            autocorrelation(np.array([]))


class TestEffectiveSampleSize:
    def test_independent_draws(self, rng):
        ess = effective_sample_size(rng.standard_normal((4, 1000)))
        assert 2500 < ess < 6500

    def test_correlated_draws(self, rng):
        chains = _ar1(rng, 1000, 0.9, n_chains=4)
        ess = effective_sample_size(chains)
        # Theory: 4000 * (1 - 0.9) / (1 + 0.9) ≈ 210
        assert 80 < ess < 600

    def test_single_chain_1d(self, rng):
        assert effective_sample_size(rng.standard_normal(500)) > 250

    def test_too_few_draws(self):
        assert np.isnan(effective_sample_size(np.ones((2, 3))))

    def test_constant_draws(self):
        assert np.isnan(effective_sample_size(np.ones((2, 50))))


# ------------------------------------------------------------------ #
# R-hat
# ------------------------------------------------------------------ #


class TestPotentialScaleReduction:
    def test_well_mixed_near_one(self, rng):
        rhat = potential_scale_reduction(rng.standard_normal((4, 1000)))
        assert rhat == pytest.approx(1.0, abs=0.01)

    def test_separated_chains_large(self, rng):
        chains = rng.standard_normal((3, 500)) + np.array([[0.0], [5.0], [10.0]])
        assert potential_scale_reduction(chains) > 2.0

    def test_drifting_single_chain_detected_when_split(self):
        chain = np.linspace(0, 10, 400)[np.newaxis, :]
        assert potential_scale_reduction(chain, split=True) > 1.5

    def test_single_chain_unsplit_is_nan(self, rng):
        assert np.isnan(potential_scale_reduction(rng.standard_normal((1, 100)), split=False))

    def test_too_few_draws_is_nan(self, rng):
        assert np.isnan(potential_scale_reduction(rng.standard_normal((3, 3))))


# ------------------------------------------------------------------ #
# Intervals & point estimates
# ------------------------------------------------------------------ #


class TestCredibleInterval:
    def test_equal_tailed_normal(self, rng):
        lo, hi = credible_interval(rng.standard_normal(100_000), 0.95)
        assert lo == pytest.approx(-1.96, abs=0.05)
        assert hi == pytest.approx(1.96, abs=0.05)

    def test_hdi_shorter_for_skewed(self, rng):
        draws = rng.exponential(1.0, 20_000)
        et = credible_interval(draws, 0.9, "equal_tailed")
        hdi = credible_interval(draws, 0.9, "hdi")
        assert hdi[1] - hdi[0] < et[1] - et[0]
        assert hdi[0] == pytest.approx(0.0, abs=0.01)

    def test_hdi_contains_level(self, rng):
        draws = rng.standard_normal(5000)
        lo, hi = credible_interval(draws, 0.8, "hdi")
        inside = np.mean((draws >= lo) & (draws <= hi))
        assert inside == pytest.approx(0.8, abs=0.01)

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="level"):
            credible_interval(np.ones(5), 1.0)

    def test_invalid_method(self):
        with pytest.raises(ValueError, match="Unknown interval method"):
            credible_interval(np.ones(5), 0.9, "central")


class TestPointEstimate:
    def test_mean_and_median(self):
        draws = np.array([1.0, 2.0, 3.0, 10.0])
        assert point_estimate(draws, "mean") == 4.0
        assert point_estimate(draws, "median") == 2.5

    def test_mode_of_normal(self, rng):
        assert point_estimate(rng.normal(3.0, 1.0, 20_000), "mode") == pytest.approx(3.0, abs=0.15)

    def test_mode_of_constant(self):
        assert point_estimate(np.full(10, 2.0), "mode") == 2.0

    def test_unknown_estimator(self):
        with pytest.raises(ValueError, match="Unknown estimator"):
            point_estimate(np.ones(3), "trimmed")


# ------------------------------------------------------------------ #
# Report
# ------------------------------------------------------------------ #


class TestSummarizePosterior:
    def test_table_columns(self, rng):
        post = _posterior([rng.normal(size=(500, 2)) for _ in range(3)])
        report = summarize_posterior(post)
        assert list(report.table.columns) == [
            "term", "estimate", "mean", "sd", "mcse", "lower", "upper",
            "ess", "rhat", "acceptance",
        ]
        assert list(report.table["term"]) == ["Intercept", "x"]
        assert report.n_chains == 3
        assert report.n_draws == 500
        assert report.converged

    def test_poor_mixing_warns_and_records(self, rng):
        chains = [rng.normal(loc=m, size=(300, 2)) for m in (0.0, 3.0)]
        post = _posterior(chains)
        with pytest.warns(PoorMixingWarning, match="R-hat"):
            report = summarize_posterior(post)
        assert not report.converged
        terms = {w.term for w in report.warnings if w.category == "PoorMixingWarning"}
        assert terms == {"Intercept", "x"}

    def test_threshold_configurable(self, rng):
        chains = [rng.normal(loc=m, size=(300, 2)) for m in (0.0, 3.0)]
        report = summarize_posterior(_posterior(chains), rhat_threshold=100.0)
        assert report.converged
        assert not report.warnings

    def test_sampler_warnings_carried(self, rng):
        record = WarningRecord("NonConvergenceWarning", "low acceptance", chain=0)
        post = _posterior([rng.normal(size=(100, 2))], warnings=(record,))
        report = summarize_posterior(post)
        assert report.warnings[0] == record

    def test_acceptance_column(self, rng):
        post = _posterior(
            [rng.normal(size=(100, 2)), rng.normal(size=(100, 2))],
            acceptance_rates=(0.4, 0.5),
        )
        report = summarize_posterior(post)
        assert report.table["acceptance"].iloc[0] == pytest.approx(0.45)

    def test_estimator_and_interval_options(self, rng):
        post = _posterior([rng.exponential(size=(2000, 2))])
        report = summarize_posterior(post, estimator="median", interval="hdi", level=0.9)
        row = report.row("x")
        assert row["estimate"] == pytest.approx(np.median(post.coefficient("x")))
        assert report.level == 0.9

    def test_mcse_is_sd_over_root_ess(self, rng):
        report = summarize_posterior(_posterior([rng.normal(size=(400, 2))] * 2))
        row = report.row("Intercept")
        assert row["mcse"] == pytest.approx(row["sd"] / np.sqrt(row["ess"]))

    def test_empty_posterior_rejected(self):
        with pytest.raises(ValueError, match="without draws"):
            summarize_posterior(_posterior([]))

    def test_to_dict_json(self, rng):
        report = summarize_posterior(_posterior([rng.normal(size=(100, 2))] * 2))
        payload = report.to_dict()
        json.dumps(payload)
        assert payload["table"][0]["term"] == "Intercept"
