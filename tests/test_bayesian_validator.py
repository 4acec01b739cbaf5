import json
import math

import pytest

from analytics_errors import InsufficientDataError, InvalidInputError
from conftest import likert_responses
from statistical_analysis.bayesian_validator import (
    BayesianValidator,
    Prior,
    PriorDistribution,
    format_validation_result,
)
from survey_models import SurveyData


@pytest.fixture
def validator():
    return BayesianValidator()


def all_results(validator, data):
    return [
        validator.validate_purchase_intent(data),
        validator.validate_price_sensitivity(data),
        validator.validate_brand_preference(data),
    ]


class TestPriors:

    def test_default_priors(self, validator):
        priors = validator.get_priors()

        assert priors['purchase_intent'].mean == pytest.approx(0.3)
        assert priors['purchase_intent'].parameters == {'alpha': 3.0, 'beta': 7.0}
        assert priors['price_sensitivity'].distribution is PriorDistribution.NORMAL
        assert priors['price_sensitivity'].variance == 0.1
        assert priors['brand_preference'].mean == pytest.approx(0.4)
        assert priors['feature_importance'].mean == pytest.approx(0.6)
        assert priors['feature_importance'].variance == pytest.approx(0.18)

    def test_get_priors_returns_copy(self, validator):
        priors = validator.get_priors()
        priors['purchase_intent'] = Prior.beta(1, 1)
        assert validator.priors['purchase_intent'].parameters['alpha'] == 3.0

    def test_beta_from_moments_round_trip(self):
        prior = Prior.beta_from_moments(0.3, Prior.beta(3, 7).variance)
        assert prior.parameters['alpha'] == pytest.approx(3)
        assert prior.parameters['beta'] == pytest.approx(7)

    def test_invalid_beta_moments_rejected(self):
        with pytest.raises(InvalidInputError):
            Prior.beta_from_moments(0.5, 0.5)

    def test_set_prior_replaces_whole_value(self, validator):
        validator.set_prior('purchase_intent', Prior.beta(1, 1))
        result = validator.validate_purchase_intent(likert_responses(10, 5))
        assert result.value == pytest.approx(6 / 12)


class TestConjugateUpdates:

    def test_purchase_intent_posterior_between_prior_and_data(self, validator):
        result = validator.validate_purchase_intent(likert_responses(100, 60))

        assert result.value == pytest.approx(63 / 110)
        assert 0.3 < result.value < 0.6
        assert result.posterior_parameters == {'alpha': 63.0, 'beta': 47.0}

    def test_purchase_intent_converges_with_sample_size(self, validator):
        small = validator.validate_purchase_intent(likert_responses(10, 6))
        large = validator.validate_purchase_intent(likert_responses(1000, 600))

        assert 0.3 < small.value < 0.6
        assert 0.3 < large.value < 0.6
        assert abs(large.value - 0.6) < abs(small.value - 0.6)

    def test_configurable_positive_threshold(self):
        lenient = BayesianValidator(positive_threshold=3.0)
        result = lenient.validate_purchase_intent([3, 3, 3, 1])
        assert result.posterior_parameters['alpha'] == 6.0

    def test_price_sensitivity_normal_update(self, validator):
        responses = [0.6, 0.8, 0.7, 0.9, 0.5, 0.7]
        result = validator.validate_price_sensitivity(responses)

        n = len(responses)
        mean = sum(responses) / n
        variance = sum((r - mean) ** 2 for r in responses) / n
        precision = 1 / 0.1 + n / variance
        expected = (0.5 / 0.1 + n * mean / variance) / precision

        assert result.value == pytest.approx(expected)
        assert result.credible_interval.upper - result.credible_interval.lower == pytest.approx(
            2 * 1.96 * math.sqrt(1 / precision)
        )

    def test_identical_responses_do_not_crash(self, validator):
        for result in all_results(validator, [3.0] * 40):
            assert math.isfinite(result.value)
            assert result.credible_interval.lower <= result.value <= result.credible_interval.upper

    def test_empty_responses_fall_back_to_prior(self, validator):
        intent = validator.validate_purchase_intent([])
        price = validator.validate_price_sensitivity([])

        assert intent.value == pytest.approx(0.3)
        assert price.value == pytest.approx(0.5)
        assert intent.robustness == 0.5


class TestResultInvariants:

    @pytest.mark.parametrize("responses", [
        likert_responses(100, 60),
        likert_responses(20, 2),
        likert_responses(50, 50),
        [0.1, 0.2, 0.9, 0.4, 0.3],
    ])
    def test_credible_interval_contains_value(self, validator, responses):
        for result in all_results(validator, responses):
            assert result.credible_interval.lower <= result.value <= result.credible_interval.upper
            assert result.credible_interval.probability == pytest.approx(0.95)

    def test_confidence_is_complement_of_p_value(self, validator):
        for result in all_results(validator, likert_responses(100, 60)):
            assert result.confidence == 1 - result.bayesian_p_value

    def test_beta_interval_is_clamped(self, validator):
        result = validator.validate_brand_preference([5.0] * 200)
        assert result.credible_interval.upper <= 1.0

    def test_effect_size_sign(self, validator):
        assert validator.validate_purchase_intent(likert_responses(100, 90)).effect_size > 0
        assert validator.validate_purchase_intent(likert_responses(100, 10)).effect_size < 0

    def test_effect_size_defined_outside_unit_interval(self, validator):
        result = validator.validate_price_sensitivity([4.0, 5.0, 4.5, 3.5])
        assert math.isfinite(result.effect_size)

    def test_bonferroni_tightens_each_comparison(self, validator):
        data = likert_responses(40, 20)
        corrections = [result.multiple_testing_correction for _ in range(3) for result in all_results(validator, data)]

        assert corrections == [pytest.approx(min(1.0, 0.05 / n)) for n in range(1, 10)]
        assert all(a >= b for a, b in zip(corrections, corrections[1:]))

    def test_reset_restarts_counter(self, validator):
        validator.validate_purchase_intent([4, 5])
        validator.validate_purchase_intent([4, 5])
        validator.reset()
        assert validator.validate_purchase_intent([4, 5]).multiple_testing_correction == 0.05

    def test_reset_can_restore_priors(self, validator):
        validator.set_prior('purchase_intent', Prior.beta(1, 1))
        validator.reset(restore_priors=True)
        assert validator.priors['purchase_intent'].parameters['alpha'] == 3.0

    def test_to_dict_is_json_ready(self, validator):
        result = validator.validate_purchase_intent(likert_responses(30, 12))
        payload = json.loads(json.dumps(result.to_dict()))
        assert payload['credible_interval']['probability'] == pytest.approx(0.95)
        assert payload['sample_size'] == 30


class TestRobustness:

    def test_small_sample_gets_fixed_score(self, validator):
        assert validator.validate_purchase_intent([1, 5, 5]).robustness == 0.5

    def test_outliers_reduce_robustness(self, validator):
        clean = [3.0, 3.5, 4.0, 3.0, 3.5, 4.0] * 6
        noisy = clean[:-4] + [50.0, 60.0, -40.0, 80.0]

        assert validator.validate_price_sensitivity(clean).robustness == 1.0
        assert validator.validate_price_sensitivity(noisy).robustness < 1.0


class TestComprehensiveValidation:

    def test_runs_all_three_and_averages_confidence(self, validator):
        report = validator.validate_comprehensive(likert_responses(100, 60))

        expected = (report.purchase_intent.confidence + report.price_sensitivity.confidence
                    + report.brand_preference.confidence) / 3
        assert report.overall_confidence == pytest.approx(expected)
        assert report.sample_size == 100
        assert validator.multiple_comparisons == 3

    def test_recommendations(self, validator):
        report = validator.validate_comprehensive(likert_responses(100, 90))

        assert 'High confidence in purchase intent - proceed with product development' in report.recommendations
        assert 'High price sensitivity detected - consider competitive pricing strategy' in report.recommendations
        assert 'Strong brand preference - invest in brand building and marketing' in report.recommendations
        assert not any(r.startswith('Small sample size') for r in report.recommendations)

    def test_small_sample_recommendation(self, validator):
        report = validator.validate_comprehensive(likert_responses(20, 2))

        assert 'Low confidence in purchase intent - consider additional market research' in report.recommendations
        assert 'Weak brand preference - focus on product differentiation' in report.recommendations
        assert 'Results may be sensitive to outliers - consider robust statistical methods' in report.recommendations
        assert ('Small sample size - consider increasing sample size for more reliable results'
                in report.recommendations)

    def test_accepts_survey_data(self, validator):
        data = SurveyData.from_responses(likert_responses(120, 60), demographics={'segment': 'all'})
        assert validator.validate_comprehensive(data).sample_size == 120


class TestSensitivityAnalysis:

    def test_restores_prior(self, validator):
        original = validator.priors['purchase_intent']
        validator.perform_sensitivity_analysis(likert_responses(100, 60))
        assert validator.priors['purchase_intent'] is original

    def test_prior_perturbation_has_effect(self, validator):
        analysis = validator.perform_sensitivity_analysis(likert_responses(40, 20))

        assert analysis.prior_sensitivity > 0
        assert analysis.sample_size_sensitivity >= 0
        assert analysis.outlier_sensitivity > 0
        assert analysis.baseline_value == pytest.approx(23 / 50)

    def test_non_beta_prior_with_zero_mean(self, validator):
        # Normal(0, 0.1) has no Beta equivalent and validates as Beta(1, 1)
        validator.set_prior('purchase_intent', Prior.normal(0.0, 0.1))
        analysis = validator.perform_sensitivity_analysis([4, 5, 1, 2])

        assert analysis.baseline_value == pytest.approx(0.5)
        assert analysis.prior_sensitivity == pytest.approx(3.5 / 6 - 0.5)
        assert validator.priors['purchase_intent'].distribution is PriorDistribution.NORMAL

    def test_uniform_prior_is_shifted_upwards(self, validator):
        validator.set_prior('purchase_intent', Prior.uniform(0.0, 0.5))
        analysis = validator.perform_sensitivity_analysis([4, 5, 1, 2])

        # Beta(1, 1) moves to Beta(1.5, 0.5): posterior 3.5 / 6 instead of 3 / 6
        assert analysis.prior_sensitivity == pytest.approx(1 / 12)
        assert validator.priors['purchase_intent'].distribution is PriorDistribution.UNIFORM

    def test_restores_prior_on_error(self, validator, monkeypatch):
        original = validator.priors['purchase_intent']
        calls = {'n': 0}
        real = validator.validate_purchase_intent

        def failing(data):
            calls['n'] += 1
            if calls['n'] == 2:
                raise RuntimeError("boom")
            return real(data)

        monkeypatch.setattr(validator, 'validate_purchase_intent', failing)
        with pytest.raises(RuntimeError):
            validator.perform_sensitivity_analysis(likert_responses(40, 20))
        assert validator.priors['purchase_intent'] is original


class TestBayesFactorAndEmpiricalBayes:

    def test_bayes_factor_prefers_closer_model(self, validator):
        data = [0.3, 0.32, 0.28, 0.31, 0.29]
        factor = validator.calculate_bayes_factor(data, 'purchase_intent', 'feature_importance')
        assert factor > 1
        assert validator.calculate_bayes_factor(data, 'purchase_intent', 'purchase_intent') == pytest.approx(1.0)

    def test_bayes_factor_unknown_model(self, validator):
        with pytest.raises(InvalidInputError):
            validator.calculate_bayes_factor([1, 2], 'purchase_intent', 'nonexistent')

    def test_bayes_factor_needs_data(self, validator):
        with pytest.raises(InsufficientDataError):
            validator.calculate_bayes_factor([], 'purchase_intent', 'brand_preference')

    def test_update_priors_averages_moments(self, validator):
        validator.update_priors({'purchase_intent': [0.5, 0.5, 0.5, 0.5], 'unknown_metric': [1, 2]})
        prior = validator.priors['purchase_intent']

        assert prior.distribution is PriorDistribution.BETA
        assert prior.mean == pytest.approx(0.4)
        assert prior.variance == pytest.approx(Prior.beta(3, 7).variance / 2)
        assert 'unknown_metric' not in validator.priors

    def test_update_priors_normal_and_gamma(self, validator):
        validator.update_priors({'price_sensitivity': [0.7, 0.9], 'feature_importance': [0.8, 1.0]})

        assert validator.priors['price_sensitivity'].mean == pytest.approx(0.65)
        assert validator.priors['price_sensitivity'].variance == pytest.approx((0.1 + 0.01) / 2)
        assert validator.priors['feature_importance'].mean == pytest.approx(0.75)
        assert validator.priors['feature_importance'].distribution is PriorDistribution.GAMMA


class TestFormatting:

    def test_format_validation_result(self, validator):
        text = format_validation_result(validator.validate_purchase_intent(likert_responses(100, 60)))
        assert text.startswith('PURCHASE INTENT:')
        assert '95% Credible Interval' in text
        assert 'Multiple Testing Correction: 5.0%' in text
