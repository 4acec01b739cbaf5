from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import mean_squared_error
from sklearn.neural_network import MLPRegressor
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler

from analytics_errors import InsufficientDataError, InvalidInputError
from analytics_logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_PRICE = 50.0
DEMAND_CURVE_STEPS = 20


@dataclass(frozen=True)
class DemographicFeatures:
    age: float = 35
    income: float = 50000
    education: float = 5
    location: float = 5


@dataclass(frozen=True)
class PsychographicFeatures:
    price_sensitivity: float = 0.5
    brand_loyalty: float = 0.5
    risk_tolerance: float = 0.5
    innovation_adoption: float = 0.5


@dataclass(frozen=True)
class BehavioralFeatures:
    purchase_history: float = 0.5
    browsing_time: float = 300
    cart_abandonment: float = 0.3
    discount_response: float = 0.5


@dataclass(frozen=True)
class ContextualFeatures:
    time_of_day: float = 12
    day_of_week: float = 3
    seasonality: float = 0.5
    competition: float = 0.5


@dataclass(frozen=True)
class ProductFeatures:
    category: float = 5
    quality: float = 0.7
    uniqueness: float = 0.6
    urgency: float = 0.4


# (group, field, divisor) in vector order
FEATURE_SCALES: List[Tuple[str, str, float]] = [
    ('demographics', 'age', 100),
    ('demographics', 'income', 200000),
    ('demographics', 'education', 10),
    ('demographics', 'location', 10),
    ('psychographics', 'price_sensitivity', 1),
    ('psychographics', 'brand_loyalty', 1),
    ('psychographics', 'risk_tolerance', 1),
    ('psychographics', 'innovation_adoption', 1),
    ('behavioral', 'purchase_history', 1),
    ('behavioral', 'browsing_time', 3600),
    ('behavioral', 'cart_abandonment', 1),
    ('behavioral', 'discount_response', 1),
    ('contextual', 'time_of_day', 24),
    ('contextual', 'day_of_week', 7),
    ('contextual', 'seasonality', 1),
    ('contextual', 'competition', 1),
    ('product', 'category', 10),
    ('product', 'quality', 1),
    ('product', 'uniqueness', 1),
    ('product', 'urgency', 1),
]
FEATURE_VECTOR_LENGTH = len(FEATURE_SCALES)

_GROUP_TYPES = {
    'demographics': DemographicFeatures,
    'psychographics': PsychographicFeatures,
    'behavioral': BehavioralFeatures,
    'contextual': ContextualFeatures,
    'product': ProductFeatures,
}


@dataclass(frozen=True)
class PricingFeatures:
    demographics: DemographicFeatures = field(default_factory=DemographicFeatures)
    psychographics: PsychographicFeatures = field(default_factory=PsychographicFeatures)
    behavioral: BehavioralFeatures = field(default_factory=BehavioralFeatures)
    contextual: ContextualFeatures = field(default_factory=ContextualFeatures)
    product: ProductFeatures = field(default_factory=ProductFeatures)

    def raw_values(self) -> List[float]:
        return [float(getattr(getattr(self, group), name)) for group, name, _ in FEATURE_SCALES]

    def to_vector(self) -> np.ndarray:
        """Scaled 20-element vector, each entry clipped into [0, 1]"""
        scales = np.array([scale for _, _, scale in FEATURE_SCALES], dtype=float)
        return np.clip(np.array(self.raw_values(), dtype=float) / scales, 0.0, 1.0)

    def with_psychographics(self, **changes: float) -> "PricingFeatures":
        return replace(self, psychographics=replace(self.psychographics, **changes))

    @classmethod
    def from_survey_data(cls, data: Optional[Mapping[str, Any]]) -> "PricingFeatures":
        """Build features from a flat mapping; snake_case or camelCase keys, defaults for missing ones"""
        data = data or {}
        groups = {}
        for group, group_type in _GROUP_TYPES.items():
            values = {}
            for group_field in fields(group_type):
                value = _lookup(data, group_field.name)
                if value is None:
                    continue
                try:
                    values[group_field.name] = float(value)
                except (TypeError, ValueError) as e:
                    raise InvalidInputError(f"Pricing feature {group_field.name} must be numeric, got {value!r}") from e
            groups[group] = group_type(**values)
        return cls(**groups)


@dataclass(frozen=True)
class DemandPoint:
    price: float
    demand: float


@dataclass(frozen=True)
class SegmentRecommendation:
    segment: str
    optimal_price: float
    reasoning: str


@dataclass(frozen=True)
class PricingPrediction:
    optimal_price: float
    confidence: float
    price_range: Tuple[float, float]
    demand_curve: List[DemandPoint]
    elasticity: float
    revenue_projection: float
    conversion_probability: float
    segment_recommendations: List[SegmentRecommendation]
    model_used: str
    used_fallback: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PriceModel(ABC):
    """Produces a full pricing prediction from a customer feature set"""

    name = 'price_model'

    @abstractmethod
    def predict(self, features: PricingFeatures) -> PricingPrediction:
        pass


class FallbackPriceModel(PriceModel):
    """Closed-form pricing heuristic, always available"""

    name = 'statistical_fallback'

    def __init__(self, base_price: float = DEFAULT_BASE_PRICE):
        self.base_price = base_price

    def predict(self, features: PricingFeatures) -> PricingPrediction:
        sensitivity = features.psychographics.price_sensitivity
        loyalty = features.psychographics.brand_loyalty

        optimal_price = self.base_price * (1 + loyalty * 0.3 - sensitivity * 0.2)

        return PricingPrediction(
            optimal_price=optimal_price,
            confidence=0.7,
            price_range=(optimal_price * 0.8, optimal_price * 1.2),
            demand_curve=demand_curve(optimal_price, sensitivity),
            elasticity=-sensitivity * 2,
            revenue_projection=optimal_price * 300,
            conversion_probability=conversion_probability(features),
            segment_recommendations=segment_recommendations(optimal_price),
            model_used=self.name,
            used_fallback=True,
        )


class TrainedPriceModel(PriceModel):
    """Base for learned models; subclasses supply the price regression"""

    name = 'trained_model'

    def __init__(self, base_price: float = DEFAULT_BASE_PRICE):
        self.base_price = base_price

    @property
    @abstractmethod
    def is_trained(self) -> bool:
        pass

    @abstractmethod
    def predict_price(self, vector: np.ndarray) -> float:
        pass

    def metrics(self) -> Dict[str, Any]:
        return {'is_trained': self.is_trained}

    def predict(self, features: PricingFeatures) -> PricingPrediction:
        vector = features.to_vector()
        optimal_price = float(self.predict_price(vector))
        if optimal_price <= 0:
            logger.warning("Model predicted a non-positive price, clamping", model=self.name, price=optimal_price)
            optimal_price = 0.01

        sensitivity = features.psychographics.price_sensitivity
        curve = demand_curve(optimal_price, sensitivity)
        # The curve is centred on the optimal price
        at_optimal = curve[DEMAND_CURVE_STEPS // 2]

        return PricingPrediction(
            optimal_price=optimal_price,
            confidence=self._confidence(features, vector),
            price_range=(
                self.base_price * (1 - sensitivity * 0.5),
                self.base_price * (1 + (1 - sensitivity) * 0.5),
            ),
            demand_curve=curve,
            elasticity=arc_elasticity(curve),
            revenue_projection=at_optimal.price * at_optimal.demand * 1000,
            conversion_probability=conversion_probability(features),
            segment_recommendations=segment_recommendations(optimal_price),
            model_used=self.name,
            used_fallback=False,
        )

    def _confidence(self, features: PricingFeatures, vector: np.ndarray) -> float:
        """Mean of feature completeness and spread of the scaled demographic/psychographic inputs"""
        raw = features.raw_values()
        completeness = sum(1 for v in raw if v != 0) / len(raw)
        spread = min(1.0, (min(1.0, float(np.var(vector[0:4]))) + min(1.0, float(np.var(vector[4:8])))) / 2)
        return (completeness + spread) / 2


class MLPPriceModel(TrainedPriceModel):
    """Feed-forward regressor (64/32/16 ReLU, L2 regularised) over scaled features"""

    name = 'mlp_regressor'

    def __init__(
        self,
        base_price: float = DEFAULT_BASE_PRICE,
        hidden_layer_sizes: Tuple[int, ...] = (64, 32, 16),
        learning_rate: float = 0.001,
        regularization: float = 0.01,
        max_iter: int = 500,
        batch_size: int = 32,
        random_state: Optional[int] = 0
    ):
        super().__init__(base_price)
        self.pipeline = make_pipeline(
            StandardScaler(),
            MLPRegressor(
                hidden_layer_sizes=hidden_layer_sizes,
                activation='relu',
                alpha=regularization,
                learning_rate_init=learning_rate,
                batch_size=batch_size,
                max_iter=max_iter,
                random_state=random_state,
            ),
        )
        self._trained = False
        self._training_metrics: Dict[str, Any] = {}

    @property
    def is_trained(self) -> bool:
        return self._trained

    def fit(self, features: Sequence[PricingFeatures], prices: Sequence[float]) -> "MLPPriceModel":
        if len(features) != len(prices):
            raise InvalidInputError(f"Got {len(features)} feature rows but {len(prices)} prices")
        if len(features) < 2:
            raise InsufficientDataError("Training needs at least two priced observations")

        X = np.vstack([f.to_vector() for f in features])
        y = np.asarray(prices, dtype=float)
        self.pipeline.fit(X, y)
        self._trained = True

        predictions = self.pipeline.predict(X)
        self._training_metrics = {
            'training_samples': int(len(y)),
            'r2': float(self.pipeline.score(X, y)),
            'loss': float(mean_squared_error(y, predictions)),
        }
        logger.info("Price model trained", model=self.name, **self._training_metrics)
        return self

    def predict_price(self, vector: np.ndarray) -> float:
        if not self._trained:
            raise InsufficientDataError("MLPPriceModel has not been trained")
        return float(self.pipeline.predict(np.asarray(vector, dtype=float).reshape(1, -1))[0])

    def metrics(self) -> Dict[str, Any]:
        return {'is_trained': self._trained, **self._training_metrics}


def demand_curve(base_price: float, price_sensitivity: float) -> List[DemandPoint]:
    """Linear demand over [0.5, 1.5] x base price in 21 points"""
    curve = []
    for i in range(DEMAND_CURVE_STEPS + 1):
        price = base_price * (0.5 + i * 0.05)
        demand = max(0.0, 1 - price_sensitivity * (price - base_price) / base_price)
        curve.append(DemandPoint(price=price, demand=demand))
    return curve


def arc_elasticity(curve: Sequence[DemandPoint]) -> float:
    """Percent demand change over percent price change around the curve midpoint"""
    if len(curve) < 3:
        return 0.0
    mid = len(curve) // 2
    before, after = curve[mid - 1], curve[mid + 1]
    if before.price == 0 or before.demand == 0:
        return 0.0
    price_change = (after.price - before.price) / before.price
    demand_change = (after.demand - before.demand) / before.demand
    return demand_change / price_change if price_change != 0 else 0.0


def conversion_probability(features: PricingFeatures) -> float:
    sensitivity = features.psychographics.price_sensitivity
    loyalty = features.psychographics.brand_loyalty
    probability = 0.3 * (1 - sensitivity * 0.5) * (1 + loyalty * 0.3)
    return min(0.95, max(0.05, probability))


def segment_recommendations(optimal_price: float) -> List[SegmentRecommendation]:
    return [
        SegmentRecommendation('High Income', optimal_price * 1.2, 'Higher income allows for premium pricing'),
        SegmentRecommendation('Price Sensitive', optimal_price * 0.8, 'Lower pricing to maximize conversion'),
        SegmentRecommendation('Brand Loyal', optimal_price * 1.1, 'Brand loyalty supports premium pricing'),
    ]


def _lookup(data: Mapping[str, Any], name: str) -> Any:
    parts = name.split('_')
    camel = parts[0] + ''.join(p.title() for p in parts[1:])
    for key in (name, camel):
        if key in data and data[key] is not None:
            return data[key]
    return None
