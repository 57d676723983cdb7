"""Tests for result dataclasses: dict access and serialisation."""

import dataclasses
import json

import numpy as np
import pandas as pd
import pytest

from bayesian_norms._results import (
    PosteriorSamples,
    ScoringResult,
    SelectionResult,
    WarningRecord,
    _numpy_to_python,
)
from bayesian_norms.families import GaussianFamily, PoissonFamily
from bayesian_norms.specification import ModelSpecification


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def posterior(rng):
    record = WarningRecord("NonConvergenceWarning", "low acceptance", chain=1)
    return PosteriorSamples(
        chains=(rng.normal(size=(20, 2)), rng.normal(size=(20, 2))),
        terms=("Intercept", "x"),
        family=GaussianFamily(sigma=1.5),
        seeds=(11, 12),
        acceptance_rates=(0.41, 0.12),
        warnings=(record,),
    )


class TestNumpyToPython:
    def test_scalars(self):
        assert type(_numpy_to_python(np.float64(1.5))) is float
        assert type(_numpy_to_python(np.int64(3))) is int
        assert type(_numpy_to_python(np.bool_(True))) is bool

    def test_nested(self):
        out = _numpy_to_python({"a": [np.arange(2)], "b": (np.float32(1.0),)})
        assert out == {"a": [[0, 1]], "b": (1.0,)}

    def test_dataframe_rows(self):
        df = pd.DataFrame({"term": ["a"], "pip": [np.float64(0.7)]})
        assert _numpy_to_python(df) == [{"term": "a", "pip": 0.7}]


class TestDictAccess:
    def test_getitem(self, posterior):
        assert posterior["terms"] == ("Intercept", "x")

    def test_getitem_missing(self, posterior):
        with pytest.raises(KeyError):
            posterior["nope"]

    def test_get_default(self, posterior):
        assert posterior.get("nope", 5) == 5

    def test_contains(self, posterior):
        assert "chains" in posterior
        assert "nope" not in posterior
        assert 3 not in posterior


class TestPosteriorSamples:
    def test_chains_are_read_only(self, posterior):
        with pytest.raises(ValueError):
            posterior.chains[0][0, 0] = 99.0

    def test_frozen(self, posterior):
        with pytest.raises(dataclasses.FrozenInstanceError):
            posterior.terms = ("a",)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="does not match"):
            PosteriorSamples(
                chains=(np.zeros((5, 3)),), terms=("Intercept", "x"),
                family=PoissonFamily(),
            )

    def test_pooled_and_stacked(self, posterior):
        assert posterior.pooled().shape == (40, 2)
        assert posterior.stacked().shape == (2, 20, 2)
        assert posterior.n_draws == 40
        np.testing.assert_array_equal(
            posterior.coefficient("x"), posterior.pooled()[:, 1]
        )

    def test_stacked_unequal(self):
        post = PosteriorSamples(
            chains=(np.zeros((5, 1)), np.zeros((4, 1))), terms=("Intercept",),
            family=PoissonFamily(),
        )
        with pytest.raises(ValueError, match="unequal"):
            post.stacked()

    def test_to_frame(self, posterior):
        df = posterior.to_frame()
        assert list(df.columns) == ["chain", "draw", "Intercept", "x"]
        assert len(df) == 40
        assert df["chain"].iloc[-1] == 1

    def test_round_trip(self, posterior):
        payload = json.loads(json.dumps(posterior.to_dict()))
        restored = PosteriorSamples.from_dict(payload)
        assert restored.terms == posterior.terms
        assert restored.family.name == "gaussian"
        assert restored.family.sigma == 1.5
        assert restored.seeds == (11, 12)
        assert restored.warnings == posterior.warnings
        for a, b in zip(restored.chains, posterior.chains):
            np.testing.assert_array_equal(a, b)


class TestSelectionResult:
    def _make(self):
        return SelectionResult(
            pip_table=pd.DataFrame({"term": ["a", "a:b", "b"], "pip": [0.9, 0.6, 0.2]}),
            model_probabilities=pd.DataFrame(
                {
                    "terms": [("a", "b", "a:b"), ("a",)],
                    "n_terms": [3, 1],
                    "log_marginal_likelihood": [-10.0, -11.0],
                    "log_prior": [-1.0, -1.0],
                    "probability": [0.6, 0.4],
                }
            ),
            recommended=ModelSpecification(("a", "b", "a:b")),
            threshold=0.5,
            family=PoissonFamily(),
            strategy="exhaustive",
            n_models_evaluated=2,
            candidate_terms=("a", "b", "a:b"),
        )

    def test_pips(self):
        assert self._make().pips == {"a": 0.9, "a:b": 0.6, "b": 0.2}

    def test_recommend_at_other_threshold(self):
        result = self._make()
        assert result.recommend(0.7).terms == ("a",)
        assert result.recommend(0.1).terms == ("a", "b", "a:b")

    def test_to_dict(self):
        payload = self._make().to_dict()
        json.dumps(payload)
        assert payload["model_probabilities"][0]["terms"] == ["a", "b", "a:b"]
        assert payload["family"] == "poisson"


class TestScoringResult:
    def test_percentile(self):
        result = ScoringResult(0.25, 0.01, 100, 7.0)
        assert result.percentile == 25.0
        assert result["probability"] == 0.25

    def test_to_dict_with_samples(self):
        result = ScoringResult(0.5, 0.01, 3, 7.0, per_sample=np.array([0.4, 0.5, 0.6]))
        assert result.to_dict()["per_sample"] == [0.4, 0.5, 0.6]

    def test_to_dict_keys_are_fields(self):
        result = ScoringResult(0.5, 0.01, 3, 7.0)
        payload = result.to_dict()
        assert list(payload) == [f.name for f in dataclasses.fields(result)]
        assert payload["per_sample"] is None
