"""Tests for the display module."""

import numpy as np
import pandas as pd

from bayesian_norms._results import (
    ConvergenceReport,
    ScoringResult,
    SelectionResult,
    WarningRecord,
)
from bayesian_norms.display import (
    _fmt,
    _truncate,
    print_convergence_table,
    print_pip_table,
    print_scoring_result,
)
from bayesian_norms.families import PoissonFamily
from bayesian_norms.specification import ModelSpecification


def _selection(**overrides):
    kwargs = dict(
        pip_table=pd.DataFrame(
            {"term": ["a:b", "a", "b"], "pip": [0.8, 0.99, 0.3]}
        ),
        model_probabilities=pd.DataFrame(
            {
                "terms": [("a", "b", "a:b"), ("a",), ()],
                "n_terms": [3, 1, 0],
                "log_marginal_likelihood": [-100.0, -101.5, np.nan],
                "log_prior": [-1.0, -1.0, -1.0],
                "probability": [0.8, 0.2, 0.0],
            }
        ),
        recommended=ModelSpecification(("a", "b", "a:b")),
        threshold=0.5,
        family=PoissonFamily(),
        strategy="exhaustive",
        n_models_evaluated=3,
        candidate_terms=("a", "b", "a:b"),
    )
    kwargs.update(overrides)
    return SelectionResult(**kwargs)


def _report(**overrides):
    kwargs = dict(
        table=pd.DataFrame(
            {
                "term": ["Intercept", "a_really_long_covariate_name"],
                "estimate": [1.0, -0.3],
                "mean": [1.0, -0.3],
                "sd": [0.05, 0.04],
                "mcse": [0.001, 0.001],
                "lower": [0.9, -0.38],
                "upper": [1.1, -0.22],
                "ess": [2500.0, np.nan],
                "rhat": [1.001, np.nan],
                "acceptance": [0.44, 0.44],
            }
        ),
        level=0.95,
        estimator="mean",
        interval="equal_tailed",
        rhat_threshold=1.1,
        n_chains=3,
        n_draws=1000,
        acceptance_rates=(0.43, 0.44, 0.45),
    )
    kwargs.update(overrides)
    return ConvergenceReport(**kwargs)


class TestHelpers:
    def test_short_name_unchanged(self):
        assert _truncate("abc", 10) == "abc"

    def test_long_name_truncated(self):
        result = _truncate("abcdefghijk", 10)
        assert len(result) == 10
        assert result.endswith("...")

    def test_fmt_nan(self):
        assert _fmt(float("nan")) == "N/A"
        assert _fmt(1.23456, ".2f") == "1.23"


class TestPrintPipTable:
    def test_flags_and_models(self, capsys):
        print_pip_table(_selection())
        out = capsys.readouterr().out
        assert "Posterior Inclusion Probabilities" in out
        lines = {line.split()[0]: line for line in out.splitlines() if line.split()}
        assert lines["a:b"].rstrip().endswith("*")
        assert lines["b"].rstrip().endswith("+")
        assert "a + b + a:b" in out
        assert "(intercept only)" in out
        assert "N/A" in out

    def test_width(self, capsys):
        print_pip_table(_selection())
        assert max(len(line) for line in capsys.readouterr().out.splitlines()) <= 80

    def test_failed_models_note(self, capsys):
        print_pip_table(_selection(failed_models=(("a", "b", "a:b"),)))
        out = capsys.readouterr().out
        assert "could not be evaluated" in out

    def test_stochastic_note(self, capsys):
        print_pip_table(_selection(strategy="stochastic"))
        assert "renormalised" in capsys.readouterr().out

    def test_skip_models(self, capsys):
        print_pip_table(_selection(), max_models=0)
        assert "Top models" not in capsys.readouterr().out


class TestPrintConvergenceTable:
    def test_prints_rows(self, capsys):
        print_convergence_table(_report())
        out = capsys.readouterr().out
        assert "Intercept" in out
        assert "2.5%" in out and "97.5%" in out
        assert "0.440" in out
        assert "a_really_long_c..." in out
        assert "Notes" not in out

    def test_warning_notes(self, capsys):
        record = WarningRecord(
            "PoorMixingWarning", "R-hat for 'a' is 1.500 (> 1.1).", term="a"
        )
        print_convergence_table(_report(warnings=(record,)))
        out = capsys.readouterr().out
        assert "Notes" in out
        assert "[1] R-hat for 'a'" in out

    def test_no_acceptance_rates(self, capsys):
        print_convergence_table(_report(acceptance_rates=()))
        assert "N/A" in capsys.readouterr().out


class TestPrintScoringResult:
    def test_prints_probability(self, capsys):
        result = ScoringResult(
            probability=0.0312, mc_se=0.0021, n_samples=3000, observed_score=9.0
        )
        print_scoring_result(result)
        out = capsys.readouterr().out
        assert "0.0312" in out
        assert "3.1" in out
        assert "3000" in out
