from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from analytics_config import AnalyticsConfig
from analytics_errors import InvalidInputError
from analytics_logging import configure_logging, get_logger
from price_optimization.neural_price_optimizer import NeuralPriceOptimizer
from price_optimization.price_models import PricingFeatures, TrainedPriceModel
from statistical_analysis.bayesian_validator import BayesianValidator
from statistical_engine import StatisticalEngine
from survey_analysis.maxdiff import MaxDiffAnalyzer, MaxDiffResponse, validate_maxdiff_data
from survey_analysis.persona_clusterer import PersonaClusterer, PersonaNarrator
from survey_analysis.van_westendorp import (
    VanWestendorpAnalyzer,
    VanWestendorpData,
    validate_van_westendorp_data,
)
from survey_design.sample_size_calculator import SampleSizeCalculator, SampleSizeInputs
from survey_design.segmentation_calculator import Segment, SegmentationSampleCalculator
from survey_models import SurveyData, SurveyResponse

logger = get_logger(__name__)


class MarketResearchFramework:
    """Entry point tying the survey analytics components to one configuration.

    Every method returns plain, JSON-serialisable dicts.
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        price_model: Optional[TrainedPriceModel] = None
    ):
        self.config = config or AnalyticsConfig()
        configure_logging(self.config.log_level, self.config.log_json)

        self.statistical_engine = StatisticalEngine(default_alpha=self.config.significance_level)
        self.persona_clusterer = PersonaClusterer(
            min_cluster_size=self.config.min_cluster_size,
            max_clusters=self.config.max_personas,
        )
        self.price_optimizer = NeuralPriceOptimizer(price_model, base_price=self.config.base_price)
        self.validator: Optional[BayesianValidator] = None
        self.analysis_counts: Dict[str, int] = {}

    def plan_sample_size(
        self,
        population_size: float,
        confidence_level: float = 0.95,
        margin_of_error: float = 0.05,
        expected_proportion: float = 0.5,
        response_rate: Optional[float] = None,
        design_effect: float = 1.0
    ) -> Dict[str, Any]:
        """Validate inputs, then size the survey when they are usable"""
        inputs = SampleSizeInputs(
            population_size=population_size,
            confidence_level=confidence_level,
            margin_of_error=margin_of_error,
            expected_proportion=expected_proportion,
            response_rate=response_rate,
            design_effect=design_effect,
        )
        calculator = SampleSizeCalculator(
            inputs,
            cost_per_response=self.config.cost_per_response,
            default_response_rate=self.config.default_response_rate,
        )

        errors = calculator.validate()
        self._count('sample_size')
        if errors:
            logger.warning("Sample size inputs rejected", errors=errors)
            return {'valid': False, 'errors': errors, 'calculation': None,
                    'insights': [], 'recommendations': []}

        return {
            'valid': True,
            'errors': [],
            'calculation': calculator.calculate().to_dict(),
            'insights': calculator.generate_insights(),
            'recommendations': calculator.generate_recommendations(),
        }

    def plan_segmentation(
        self,
        segments: Sequence[Union[Segment, Mapping[str, Any]]],
        total_population: float,
        response_rate: Optional[float] = None
    ) -> Dict[str, Any]:
        segment_objects = [s if isinstance(s, Segment) else _segment_from_dict(s) for s in segments]
        calculator = SegmentationSampleCalculator(
            segment_objects,
            total_population,
            response_rate=response_rate,
            cost_per_response=self.config.cost_per_response,
        )
        self._count('segmentation')
        return calculator.calculate().to_dict()

    def analyze_pricing(self, price_data: Union[VanWestendorpData, Mapping[str, Sequence[float]]]) -> Dict[str, Any]:
        data = price_data if isinstance(price_data, VanWestendorpData) else VanWestendorpData.from_dict(price_data)
        analyzer = VanWestendorpAnalyzer(data)
        analysis = analyzer.analyze()
        self._count('pricing')
        return {
            'analysis': analysis.to_dict(),
            'validation_errors': validate_van_westendorp_data(data),
            'insights': analyzer.generate_insights(),
            'recommendations': analyzer.generate_recommendations(),
        }

    def analyze_feature_priorities(
        self,
        features: Sequence[str],
        responses: Sequence[Union[MaxDiffResponse, Mapping[str, Any]]]
    ) -> Dict[str, Any]:
        response_objects = [r if isinstance(r, MaxDiffResponse) else _maxdiff_from_dict(r) for r in responses]
        analyzer = MaxDiffAnalyzer(
            features,
            response_objects,
            significance_level=self.config.significance_level,
            engine=self.statistical_engine,
        )
        analysis = analyzer.analyze()
        self._count('feature_priorities')
        return {
            'analysis': analysis.to_dict(),
            'validation_errors': validate_maxdiff_data(response_objects, features),
            'insights': analyzer.generate_insights(),
            'recommendations': analyzer.generate_recommendations(),
        }

    def start_validation_session(self) -> BayesianValidator:
        """Begin a fresh Bayesian session; comparison counts restart at zero"""
        self.validator = BayesianValidator(
            positive_threshold=self.config.positive_response_threshold,
            credible_interval_z=self.config.credible_interval_z,
            significance_level=self.config.significance_level,
            engine=self.statistical_engine,
        )
        return self.validator

    def validate_survey(
        self,
        responses: Union[SurveyData, Sequence[float]],
        include_sensitivity: bool = True
    ) -> Dict[str, Any]:
        if self.validator is None:
            self.start_validation_session()

        data = responses if isinstance(responses, SurveyData) else SurveyData.from_responses(responses)
        report = self.validator.validate_comprehensive(data).to_dict()
        if include_sensitivity and data.sample_size > 0:
            report['sensitivity'] = self.validator.perform_sensitivity_analysis(data).to_dict()
        self._count('validation')
        return report

    def build_personas(
        self,
        responses: Sequence[Union[SurveyResponse, Mapping[str, Any]]],
        narrator: Optional[PersonaNarrator] = None
    ) -> List[Dict[str, Any]]:
        records = [r if isinstance(r, SurveyResponse) else SurveyResponse.from_dict(r) for r in responses]
        personas = self.persona_clusterer.generate_personas(records, narrator)
        self._count('personas')
        return [persona.to_dict() for persona in personas]

    def recommend_price(
        self,
        features: Union[PricingFeatures, Mapping[str, Any], None] = None,
        dynamic: bool = False
    ) -> Dict[str, Any]:
        pricing_features = features if isinstance(features, PricingFeatures) else PricingFeatures.from_survey_data(features)
        self._count('pricing_recommendation')
        if dynamic:
            return self.price_optimizer.generate_dynamic_pricing(pricing_features).to_dict()
        return self.price_optimizer.predict_optimal_price(pricing_features).to_dict()

    def get_session_metrics(self) -> Dict[str, Any]:
        return {
            'analyses': dict(self.analysis_counts),
            'validation_comparisons': self.validator.multiple_comparisons if self.validator else 0,
            'price_model': self.price_optimizer.get_model_metrics(),
            'config': self.config.to_dict(),
        }

    def _count(self, analysis: str) -> None:
        self.analysis_counts[analysis] = self.analysis_counts.get(analysis, 0) + 1


def _segment_from_dict(data: Mapping[str, Any]) -> Segment:
    try:
        return Segment(
            name=str(data['name']),
            size_percentage=float(data['size_percentage']),
            confidence_level=float(data.get('confidence_level', 0.95)),
            margin_of_error=float(data.get('margin_of_error', 0.05)),
            min_sample_size=int(data.get('min_sample_size', 100)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidInputError(f"Invalid segment definition: {dict(data)!r}") from e


def _maxdiff_from_dict(data: Mapping[str, Any]) -> MaxDiffResponse:
    try:
        return MaxDiffResponse(
            most_important=str(data['most_important']),
            least_important=str(data['least_important']),
            respondent_id=data.get('respondent_id'),
            question_id=data.get('question_id'),
            response_time_ms=data.get('response_time_ms'),
        )
    except KeyError as e:
        raise InvalidInputError(f"MaxDiff response is missing {e.args[0]}") from e
