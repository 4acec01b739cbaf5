from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from analytics_logging import get_logger
from price_optimization.price_models import (
    DEFAULT_BASE_PRICE,
    FallbackPriceModel,
    PricingFeatures,
    PricingPrediction,
    TrainedPriceModel,
)

logger = get_logger(__name__)

# name, psychographic override, reasoning
DYNAMIC_PRICING_SEGMENTS = [
    ('Price Sensitive', {'price_sensitivity': 0.9}, 'High price sensitivity requires lower pricing'),
    ('Premium Seekers', {'price_sensitivity': 0.1}, 'Low price sensitivity allows premium pricing'),
    ('Brand Loyal', {'brand_loyalty': 0.9}, 'High brand loyalty supports premium pricing'),
    ('Early Adopters', {'innovation_adoption': 0.9}, 'Early adopters willing to pay premium for innovation'),
]

IMPLEMENTATION_STEPS = [
    'Set up customer segmentation based on psychographic profiles',
    'Implement A/B testing for different price points',
    'Create personalized pricing algorithms',
    'Monitor conversion rates and adjust pricing dynamically',
    'Track revenue impact and optimize pricing strategy',
]


@dataclass(frozen=True)
class SegmentPricing:
    name: str
    optimal_price: float
    reasoning: str
    expected_conversion: float
    used_fallback: bool


@dataclass(frozen=True)
class DynamicPricingPlan:
    base_prediction: PricingPrediction
    segments: List[SegmentPricing]
    strategy: str
    implementation: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NeuralPriceOptimizer:
    """Price recommendation with an injected trained model and a closed-form fallback.

    The fallback runs whenever no trained model is injected or the injected
    one is not trained yet. Every prediction reports which path produced it,
    and the optimizer counts fallback predictions for monitoring.
    """

    def __init__(
        self,
        trained_model: Optional[TrainedPriceModel] = None,
        base_price: float = DEFAULT_BASE_PRICE
    ):
        self.trained_model = trained_model
        self.fallback_model = FallbackPriceModel(base_price)
        self.base_price = base_price
        self.prediction_count = 0
        self.fallback_count = 0

    @property
    def uses_trained_model(self) -> bool:
        return self.trained_model is not None and self.trained_model.is_trained

    def predict_optimal_price(self, features: PricingFeatures) -> PricingPrediction:
        self.prediction_count += 1

        if self.uses_trained_model:
            return self.trained_model.predict(features)

        self.fallback_count += 1
        logger.debug("No trained price model, using statistical fallback",
                     injected=self.trained_model is not None, fallback_count=self.fallback_count)
        return self.fallback_model.predict(features)

    def generate_dynamic_pricing(self, features: PricingFeatures) -> DynamicPricingPlan:
        base_prediction = self.predict_optimal_price(features)

        segments = []
        for name, overrides, reasoning in DYNAMIC_PRICING_SEGMENTS:
            prediction = self.predict_optimal_price(features.with_psychographics(**overrides))
            segments.append(SegmentPricing(
                name=name,
                optimal_price=prediction.optimal_price,
                reasoning=reasoning,
                expected_conversion=prediction.conversion_probability,
                used_fallback=prediction.used_fallback,
            ))

        return DynamicPricingPlan(
            base_prediction=base_prediction,
            segments=segments,
            strategy=self._pricing_strategy(segments),
            implementation=list(IMPLEMENTATION_STEPS),
        )

    def get_model_metrics(self) -> Dict[str, Any]:
        if self.trained_model is not None:
            model_metrics = self.trained_model.metrics()
            model_name = self.trained_model.name
        else:
            model_metrics = {'is_trained': False}
            model_name = None

        return {
            'trained_model': model_name,
            'active_model': self.trained_model.name if self.uses_trained_model else self.fallback_model.name,
            'predictions': self.prediction_count,
            'fallback_predictions': self.fallback_count,
            'fallback_rate': self.fallback_count / self.prediction_count if self.prediction_count else 0.0,
            **model_metrics,
        }

    def _pricing_strategy(self, segments: List[SegmentPricing]) -> str:
        prices = [s.optimal_price for s in segments]
        spread = max(prices) - min(prices)

        if spread > 20:
            return 'Implement dynamic pricing strategy with significant price differentiation across segments'
        if spread > 10:
            return 'Use moderate price differentiation with segment-specific discounts'
        return 'Maintain consistent pricing with minor segment adjustments'
