"""
Tests for the trainable model implementations, shared metrics and feature
extraction.
"""

from datetime import timedelta

import numpy as np
import pytest

from leadscore.core.errors import ModelUnavailableError, ValidationError
from leadscore.models.enums import ModelType, RiskLevel
from leadscore.services.feature_extraction import FEATURE_NAMES, DefaultFeatureExtractor
from leadscore.services.insights import build_insights, risk_level_for
from leadscore.services.model import (
    EnsembleModel,
    GradientBoostingModel,
    LogisticRegressionModel,
    build_model,
    compute_metrics,
)
from leadscore.services.scoring_engine import confidence_for
from leadscore.tests.factories import BASE_TIME, make_interactions, make_labeled_data, make_lead


class TestComputeMetrics:
    """Metric definitions shared by every evaluation path."""

    def test_confusion_counts_at_half_threshold(self) -> None:
        y_true = np.array([1, 1, 0, 0])
        y_prob = np.array([0.9, 0.4, 0.6, 0.1])

        metrics = compute_metrics(y_true, y_prob)

        assert (metrics.truePositives, metrics.falseNegatives) == (1, 1)
        assert (metrics.falsePositives, metrics.trueNegatives) == (1, 1)
        assert metrics.accuracy == pytest.approx(0.5)
        assert metrics.f1 == pytest.approx(0.5)
        assert metrics.sampleSize == 4

    def test_auc_is_none_for_single_class(self) -> None:
        metrics = compute_metrics(np.array([1, 1, 1]), np.array([0.2, 0.8, 0.9]))
        assert metrics.auc is None

    def test_auc_for_perfect_ranking(self) -> None:
        metrics = compute_metrics(np.array([0, 0, 1, 1]), np.array([0.1, 0.3, 0.6, 0.8]))
        assert metrics.auc == pytest.approx(1.0)

    def test_empty_evaluation_rejected(self) -> None:
        with pytest.raises(ValidationError):
            compute_metrics(np.array([]), np.array([]))


class TestModels:
    """fit/predict/evaluate contract across model families."""

    @pytest.mark.parametrize("model_type", [ModelType.BASELINE, ModelType.ADVANCED, ModelType.ENSEMBLE])
    def test_predictions_are_probabilities(self, model_type: ModelType) -> None:
        X, y = make_labeled_data(n=200, noise=0.5)
        model = build_model(model_type).fit(X, y)

        predictions = model.predict(X)

        assert predictions.shape == (200,)
        assert np.all((predictions >= 0) & (predictions <= 1))
        assert model.evaluate(X, y).accuracy > 0.7

    def test_predict_before_fit_raises(self) -> None:
        with pytest.raises(ModelUnavailableError):
            LogisticRegressionModel().predict(np.zeros((1, len(FEATURE_NAMES))))

    def test_config_merges_defaults(self) -> None:
        model = GradientBoostingModel({"n_estimators": 20})
        assert model.config["n_estimators"] == 20
        assert model.config["max_depth"] == 3

    def test_ensemble_needs_two_members(self) -> None:
        with pytest.raises(ValidationError):
            EnsembleModel({"members": ["baseline"]})

    def test_ensemble_averages_members(self) -> None:
        X, y = make_labeled_data(n=200, noise=0.5)
        ensemble = EnsembleModel().fit(X, y)

        expected = np.mean([m.predict(X[:5]) for m in ensemble.members], axis=0)
        np.testing.assert_allclose(ensemble.predict(X[:5]), expected)

    def test_same_seed_same_predictions(self) -> None:
        X, y = make_labeled_data(n=200, noise=0.5)
        first = build_model(ModelType.ADVANCED, random_state=7).fit(X, y)
        second = build_model(ModelType.ADVANCED, random_state=7).fit(X, y)
        np.testing.assert_array_equal(first.predict(X), second.predict(X))


class TestFeatureExtraction:
    """DefaultFeatureExtractor vector layout and values."""

    def test_vector_matches_feature_names(self) -> None:
        extractor = DefaultFeatureExtractor(clock=lambda: BASE_TIME)
        vector = extractor.extract(make_lead("lead-1"), make_interactions(4))

        assert vector.shape == (len(FEATURE_NAMES),)
        named = extractor.as_dict(vector)
        assert named["leadAgeDays"] == pytest.approx(30)
        assert named["totalInteractions"] == 4
        assert named["emailInteractions"] == 1
        assert named["phoneInteractions"] == 1
        assert named["meetingInteractions"] == 1
        assert named["websiteInteractions"] == 1
        assert named["daysSinceLastInteraction"] == pytest.approx(1)
        assert named["avgBudget"] == pytest.approx(400000)
        assert named["profileCompleteness"] == pytest.approx(1.0)

    def test_sparse_profile(self) -> None:
        extractor = DefaultFeatureExtractor(clock=lambda: BASE_TIME)
        lead = make_lead(
            "lead-2",
            email=None,
            phone=None,
            budgetMin=None,
            budgetMax=None,
            createdAt=BASE_TIME - timedelta(days=10),
        )
        named = extractor.as_dict(extractor.extract(lead))

        assert named["hasEmail"] == 0.0
        assert named["hasPhone"] == 0.0
        assert named["avgBudget"] == 0.0
        assert named["daysSinceLastInteraction"] == pytest.approx(10)


class TestInsights:

    @pytest.mark.parametrize(
        "value, level",
        [(0.95, RiskLevel.HIGH), (0.81, RiskLevel.HIGH), (0.7, RiskLevel.MEDIUM), (0.6, RiskLevel.LOW)],
    )
    def test_risk_levels(self, value: float, level: RiskLevel) -> None:
        assert risk_level_for(value) == level

    def test_insights_have_at_most_three_factors(self) -> None:
        extractor = DefaultFeatureExtractor(clock=lambda: BASE_TIME)
        features = extractor.as_dict(extractor.extract(make_lead("lead-1"), make_interactions(8)))

        insights = build_insights(0.85, features)

        assert 0 < len(insights.topFactors) <= 3
        assert insights.riskLevel == RiskLevel.HIGH
        assert insights.recommendations


@pytest.mark.parametrize("value, expected", [(0.5, 0.0), (1.0, 1.0), (0.0, 1.0), (0.75, 0.5)])
def test_confidence_is_distance_from_coin_flip(value: float, expected: float) -> None:
    assert confidence_for(value) == pytest.approx(expected)
