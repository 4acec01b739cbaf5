import json

import pytest

from analytics_config import AnalyticsConfig
from analytics_errors import InsufficientDataError, InvalidInputError
from conftest import likert_responses
from research_framework import MarketResearchFramework


@pytest.fixture
def framework():
    return MarketResearchFramework(AnalyticsConfig(cost_per_response=2.0))


def assert_json_ready(payload):
    assert json.loads(json.dumps(payload)) is not None


class TestSurveyPlanning:

    def test_plan_sample_size(self, framework):
        plan = framework.plan_sample_size(10000, response_rate=0.2)

        assert plan['valid']
        assert plan['calculation']['recommended_sample'] == 2226
        assert plan['calculation']['cost_estimate']['total_cost'] == 2226 * 2.0
        assert plan['insights']
        assert_json_ready(plan)

    def test_invalid_sample_size_inputs(self, framework):
        plan = framework.plan_sample_size(10000, confidence_level=0.8)

        assert not plan['valid']
        assert plan['calculation'] is None
        assert 'Confidence level must be 0.90, 0.95, or 0.99' in plan['errors']

    def test_plan_segmentation_from_dicts(self, framework):
        plan = framework.plan_segmentation(
            [{'name': 'Young', 'size_percentage': 40}, {'name': 'Families', 'size_percentage': 60}],
            10000,
        )

        assert [s['name'] for s in plan['segments']] == ['Young', 'Families']
        assert plan['feasibility_score'] == 100
        assert_json_ready(plan)

    def test_bad_segment_definition(self, framework):
        with pytest.raises(InvalidInputError):
            framework.plan_segmentation([{'size_percentage': 40}], 10000)


class TestAnalyses:

    def test_analyze_pricing(self, framework, demo_prices):
        result = framework.analyze_pricing(demo_prices)

        assert result['analysis']['optimal_price_point'] == pytest.approx(72.5)
        assert result['validation_errors'] == ['Sample size too small: 10. Minimum recommended: 50']
        assert result['recommendations'][0] == 'Set initial price at $72.50 for maximum market acceptance'
        assert_json_ready(result)

    def test_analyze_feature_priorities_from_dicts(self, framework, maxdiff_features, maxdiff_responses):
        payload = [
            {'most_important': r.most_important, 'least_important': r.least_important,
             'respondent_id': r.respondent_id, 'question_id': r.question_id,
             'response_time_ms': r.response_time_ms}
            for r in maxdiff_responses
        ]
        result = framework.analyze_feature_priorities(maxdiff_features, payload)

        assert result['analysis']['feature_scores'][0]['feature'] == 'Battery life'
        assert result['insights'][0] == '"Battery life" is the most important feature with 2.00 utility score'
        assert_json_ready(result)

    def test_malformed_maxdiff_response(self, framework, maxdiff_features):
        with pytest.raises(InvalidInputError):
            framework.analyze_feature_priorities(maxdiff_features, [{'most_important': 'Camera'}])

    def test_maxdiff_needs_features(self, framework, maxdiff_responses):
        with pytest.raises(InsufficientDataError):
            framework.analyze_feature_priorities(['Camera', 'Design'], maxdiff_responses)

    def test_validate_survey(self, framework):
        report = framework.validate_survey(likert_responses(100, 60))

        assert 0.3 < report['purchase_intent']['value'] < 0.6
        assert 'sensitivity' in report
        assert report['sample_size'] == 100
        assert_json_ready(report)

    def test_validation_session_accumulates_comparisons(self, framework):
        framework.validate_survey(likert_responses(40, 20), include_sensitivity=False)
        second = framework.validate_survey(likert_responses(40, 20), include_sensitivity=False)

        assert second['purchase_intent']['multiple_testing_correction'] == pytest.approx(0.05 / 4)
        assert framework.get_session_metrics()['validation_comparisons'] == 6

    def test_new_validation_session_resets_comparisons(self, framework):
        framework.validate_survey(likert_responses(40, 20), include_sensitivity=False)
        framework.start_validation_session()
        report = framework.validate_survey(likert_responses(40, 20), include_sensitivity=False)
        assert report['purchase_intent']['multiple_testing_correction'] == 0.05

    def test_config_reaches_validator(self):
        framework = MarketResearchFramework(AnalyticsConfig(positive_response_threshold=3.0))
        report = framework.validate_survey([3, 3, 3, 3], include_sensitivity=False)
        assert report['purchase_intent']['posterior_parameters']['alpha'] == 7.0

    def test_build_personas_from_dicts(self, framework):
        payload = [
            {'id': f'p{i}', 'demographics': {'age': '35-44', 'gender': 'Male', 'income': 'Mid'},
             'answers': {'purchase_intent': 7}}
            for i in range(5)
        ]
        personas = framework.build_personas(payload)

        assert len(personas) == 1
        assert personas[0]['cluster']['characteristics']['mean_purchase_intent'] == pytest.approx(7)
        assert_json_ready(personas)

    def test_persona_payload_without_id(self, framework):
        with pytest.raises(InvalidInputError):
            framework.build_personas([{'demographics': {}}])


class TestPricingAndMetrics:

    def test_recommend_price(self, framework):
        result = framework.recommend_price({'priceSensitivity': 0.5, 'brandLoyalty': 0.5})

        assert result['optimal_price'] == pytest.approx(52.5)
        assert result['used_fallback']
        assert_json_ready(result)

    def test_recommend_price_uses_configured_base(self):
        framework = MarketResearchFramework(AnalyticsConfig(base_price=100))
        assert framework.recommend_price()['optimal_price'] == pytest.approx(105)

    def test_dynamic_recommendation(self, framework):
        result = framework.recommend_price(dynamic=True)
        assert len(result['segments']) == 4
        assert_json_ready(result)

    def test_session_metrics(self, framework, demo_prices):
        framework.analyze_pricing(demo_prices)
        framework.recommend_price()
        framework.recommend_price()
        metrics = framework.get_session_metrics()

        assert metrics['analyses'] == {'pricing': 1, 'pricing_recommendation': 2}
        assert metrics['price_model']['fallback_predictions'] == 2
        assert metrics['config']['cost_per_response'] == 2.0
        assert_json_ready(metrics)
