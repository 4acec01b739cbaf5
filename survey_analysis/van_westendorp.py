import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from analytics_errors import InsufficientDataError, InvalidInputError
from analytics_logging import get_logger

logger = get_logger(__name__)

MIN_SAMPLE_SIZE = 50
MAX_VALID_PRICE = 10000
QUESTIONS_PER_RESPONDENT = 4

_BAND_ALIASES = {
    'too_cheap': ('too_cheap',),
    'cheap': ('cheap', 'good_value'),
    'expensive': ('expensive', 'expensive_but_consider'),
    'too_expensive': ('too_expensive',),
}


@dataclass(frozen=True)
class VanWestendorpData:
    """Price answers to the four questions; band lengths may differ"""

    too_cheap: Tuple[float, ...]
    cheap: Tuple[float, ...]
    expensive: Tuple[float, ...]
    too_expensive: Tuple[float, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Sequence[float]]) -> "VanWestendorpData":
        bands = {}
        for band, aliases in _BAND_ALIASES.items():
            values = next((data[alias] for alias in aliases if alias in data), None)
            if values is None:
                raise InvalidInputError(f"Missing price answers for '{band}'")
            try:
                bands[band] = tuple(float(v) for v in values)
            except (TypeError, ValueError) as e:
                raise InvalidInputError(f"Price answers for '{band}' must be numeric") from e
        return cls(**bands)

    def bands(self) -> Dict[str, Tuple[float, ...]]:
        return {
            'too_cheap': self.too_cheap,
            'cheap': self.cheap,
            'expensive': self.expensive,
            'too_expensive': self.too_expensive,
        }

    def all_prices(self) -> List[float]:
        return [*self.too_cheap, *self.cheap, *self.expensive, *self.too_expensive]

    @property
    def sample_size(self) -> int:
        return max(len(values) for values in self.bands().values())


@dataclass(frozen=True)
class PricePoint:
    price: float
    percentage: float
    count: int


@dataclass(frozen=True)
class PriceRange:
    min: float
    max: float
    optimal: float


@dataclass(frozen=True)
class PriceInterval:
    lower: float
    upper: float


@dataclass(frozen=True)
class VanWestendorpConfidenceIntervals:
    optimal_price: PriceInterval
    range_min: PriceInterval
    range_max: PriceInterval


@dataclass(frozen=True)
class VanWestendorpAnalysis:
    curves: Dict[str, List[PricePoint]]
    point_of_marginal_cheapness: float
    optimal_price_point: float
    indifference_price_point: float
    point_of_marginal_expensiveness: float
    acceptable_price_range: PriceRange
    price_sensitivity_index: float
    price_elasticity_estimate: float
    confidence_intervals: VanWestendorpConfidenceIntervals
    sample_size: int
    completion_rate: float
    data_quality_score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class VanWestendorpAnalyzer:
    """Price Sensitivity Meter using Newton-Pigou curve intersections"""

    def __init__(self, data: VanWestendorpData):
        self.data = data
        self._analysis: Optional[VanWestendorpAnalysis] = None

    def analyze(self) -> VanWestendorpAnalysis:
        if self._analysis is not None:
            return self._analysis

        bands = {}
        for band, values in self.data.bands().items():
            prices = np.asarray([p for p in values if _is_valid_price(p)], dtype=float)
            if len(prices) == 0:
                raise InsufficientDataError(f"No valid responses for the '{band}' price question")
            if len(prices) < len(values):
                logger.debug("Dropped invalid prices", band=band, dropped=len(values) - len(prices))
            bands[band] = prices

        grid = np.unique(np.concatenate(list(bands.values())))

        too_cheap = _share_at_or_above(bands['too_cheap'], grid)
        cheap = _share_at_or_above(bands['cheap'], grid)
        expensive = _share_at_or_below(bands['expensive'], grid)
        too_expensive = _share_at_or_below(bands['too_expensive'], grid)
        not_cheap = 100 - cheap
        not_expensive = 100 - expensive

        marginal_cheapness = _crossing(grid, too_cheap - not_cheap)
        optimal = _crossing(grid, too_cheap - too_expensive)
        indifference = _crossing(grid, cheap - expensive)
        marginal_expensiveness = _crossing(grid, not_expensive - too_expensive)

        sensitivity_index = (marginal_expensiveness - marginal_cheapness) / optimal if optimal != 0 else 0.0
        sample_size = self.data.sample_size

        self._analysis = VanWestendorpAnalysis(
            curves={
                'too_cheap': _curve(grid, too_cheap, len(bands['too_cheap'])),
                'cheap': _curve(grid, cheap, len(bands['cheap'])),
                'not_cheap': _curve(grid, not_cheap, len(bands['cheap'])),
                'expensive': _curve(grid, expensive, len(bands['expensive'])),
                'not_expensive': _curve(grid, not_expensive, len(bands['expensive'])),
                'too_expensive': _curve(grid, too_expensive, len(bands['too_expensive'])),
            },
            point_of_marginal_cheapness=marginal_cheapness,
            optimal_price_point=optimal,
            indifference_price_point=indifference,
            point_of_marginal_expensiveness=marginal_expensiveness,
            acceptable_price_range=PriceRange(
                min=marginal_cheapness, max=marginal_expensiveness, optimal=optimal
            ),
            price_sensitivity_index=sensitivity_index,
            price_elasticity_estimate=sensitivity_index * 100,
            confidence_intervals=self._confidence_intervals(
                optimal, marginal_cheapness, marginal_expensiveness, sample_size
            ),
            sample_size=sample_size,
            completion_rate=self._completion_rate(),
            data_quality_score=self._data_quality_score(),
        )

        logger.info("Van Westendorp analysis completed", sample_size=sample_size,
                    optimal_price=round(optimal, 2),
                    acceptable_range=(round(marginal_cheapness, 2), round(marginal_expensiveness, 2)))
        return self._analysis

    def _confidence_intervals(
        self,
        optimal: float,
        marginal_cheapness: float,
        marginal_expensiveness: float,
        sample_size: int
    ) -> VanWestendorpConfidenceIntervals:
        margin = 1.96 * math.sqrt(0.25 / sample_size)

        def band(value: float) -> PriceInterval:
            return PriceInterval(lower=value * (1 - margin), upper=value * (1 + margin))

        return VanWestendorpConfidenceIntervals(
            optimal_price=band(optimal),
            range_min=band(marginal_cheapness),
            range_max=band(marginal_expensiveness),
        )

    def _completion_rate(self) -> float:
        valid = sum(1 for p in self.data.all_prices() if _is_valid_price(p))
        return valid / (self.data.sample_size * QUESTIONS_PER_RESPONDENT) * 100

    def _data_quality_score(self) -> float:
        """Heuristic 0-100 score.

        Starts from the share of valid prices, then subtracts up to 50 points
        for prices beyond 3 standard deviations, up to 20 points for samples
        under 50 respondents, and 10 points when too-cheap answers average
        at or above too-expensive ones.
        """
        prices = self.data.all_prices()
        valid = np.asarray([p for p in prices if _is_valid_price(p)], dtype=float)
        score = min(100.0, len(valid) / len(prices) * 100)

        std = float(np.std(valid))
        if std > 0:
            outliers = np.sum(np.abs(valid - np.mean(valid)) > 3 * std)
            score -= outliers / len(valid) * 50

        if self.data.sample_size < MIN_SAMPLE_SIZE:
            score -= min(20.0, (MIN_SAMPLE_SIZE - self.data.sample_size) * 0.4)

        if np.mean(self.data.too_cheap) >= np.mean(self.data.too_expensive):
            score -= 10

        return max(0.0, float(score))

    def generate_insights(self) -> List[str]:
        analysis = self.analyze()
        insights = []

        if analysis.price_sensitivity_index < 0.3:
            insights.append('Low price sensitivity - customers are less price-conscious, allowing for premium positioning')
        elif analysis.price_sensitivity_index > 0.7:
            insights.append('High price sensitivity - customers are very price-conscious, consider competitive pricing')
        else:
            insights.append('Moderate price sensitivity - balanced approach to pricing recommended')

        price_range = analysis.acceptable_price_range
        if analysis.optimal_price_point > 0:
            range_percentage = (price_range.max - price_range.min) / analysis.optimal_price_point * 100
            if range_percentage > 50:
                insights.append('Wide acceptable price range - flexibility in pricing strategy')
            else:
                insights.append('Narrow acceptable price range - pricing precision is critical')

        if analysis.optimal_price_point > price_range.max * 0.8:
            insights.append('Optimal price near upper range - premium positioning opportunity')
        elif analysis.optimal_price_point < price_range.min * 1.2:
            insights.append('Optimal price near lower range - value positioning recommended')

        if analysis.data_quality_score > 80:
            insights.append('High data quality - results are reliable for decision making')
        elif analysis.data_quality_score < 60:
            insights.append('Low data quality - consider increasing sample size or improving data collection')

        return insights

    def generate_recommendations(self) -> List[str]:
        analysis = self.analyze()
        price_range = analysis.acceptable_price_range
        recommendations = [
            f'Set initial price at ${analysis.optimal_price_point:.2f} for maximum market acceptance',
            f'Test prices between ${price_range.min:.2f} and ${price_range.max:.2f} in A/B tests',
        ]

        if analysis.price_sensitivity_index < 0.3:
            recommendations.append('Consider premium pricing strategy - customers are less price-sensitive')
            recommendations.append('Focus on value communication rather than price competition')
        else:
            recommendations.append('Emphasize competitive pricing in marketing messages')
            recommendations.append('Consider bundle pricing to increase perceived value')

        recommendations.append('Conduct follow-up pricing tests with actual purchase behavior')
        recommendations.append('Monitor price sensitivity changes over time as market matures')
        return recommendations


def validate_van_westendorp_data(data: VanWestendorpData) -> List[str]:
    errors = []

    for band, values in data.bands().items():
        if len(values) == 0:
            errors.append(f"No responses for the '{band}' price question")

    sample_size = data.sample_size
    if sample_size < MIN_SAMPLE_SIZE:
        errors.append(f'Sample size too small: {sample_size}. Minimum recommended: {MIN_SAMPLE_SIZE}')

    prices = data.all_prices()
    if prices:
        invalid_percentage = sum(1 for p in prices if not _is_valid_price(p)) / len(prices) * 100
        if invalid_percentage > 10:
            errors.append(f'Too many invalid price responses: {invalid_percentage:.1f}%')

    if data.too_cheap and data.too_expensive and np.mean(data.too_cheap) >= np.mean(data.too_expensive):
        errors.append('Logical inconsistency: average "too cheap" price >= average "too expensive" price')

    return errors


def generate_van_westendorp_questions() -> List[Dict[str, Any]]:
    """The four price questions, asked from most to least expensive"""
    prompts = [
        'At what price would you consider this product TOO EXPENSIVE to buy?',
        'At what price would you consider this product EXPENSIVE, but still consider buying?',
        'At what price would you consider this product a GOOD VALUE?',
        'At what price would you consider this product TOO CHEAP (quality concerns)?',
    ]
    price_rule = {
        'type': 'pattern',
        'value': r'^\$?\d+(\.\d{2})?$',
        'message': 'Please enter a valid price (e.g., $25.99 or 25.99)',
    }
    return [
        {
            'id': f'van_westendorp_{i}',
            'type': 'text-short',
            'text': text,
            'required': True,
            'validation_rules': [dict(price_rule)],
        }
        for i, text in enumerate(prompts, start=1)
    ]


def _is_valid_price(price: float) -> bool:
    return math.isfinite(price) and 0 < price < MAX_VALID_PRICE


def _share_at_or_above(prices: np.ndarray, grid: np.ndarray) -> np.ndarray:
    sorted_prices = np.sort(prices)
    counts = len(sorted_prices) - np.searchsorted(sorted_prices, grid, side='left')
    return counts / len(sorted_prices) * 100


def _share_at_or_below(prices: np.ndarray, grid: np.ndarray) -> np.ndarray:
    sorted_prices = np.sort(prices)
    counts = np.searchsorted(sorted_prices, grid, side='right')
    return counts / len(sorted_prices) * 100


def _curve(grid: np.ndarray, percentages: np.ndarray, total: int) -> List[PricePoint]:
    return [
        PricePoint(price=float(p), percentage=float(pct), count=int(round(pct * total / 100)))
        for p, pct in zip(grid, percentages)
    ]


def _crossing(grid: np.ndarray, difference: np.ndarray) -> float:
    """Price where a falling curve meets a rising one.

    The difference is non-increasing along the grid. A zero run (the curves
    touching) resolves to its midpoint; a strict sign change is linearly
    interpolated. Without a crossing the closest grid price is used.
    """
    n = len(grid)
    for i in range(n):
        if math.isclose(difference[i], 0.0, abs_tol=1e-9):
            j = i
            while j + 1 < n and math.isclose(difference[j + 1], 0.0, abs_tol=1e-9):
                j += 1
            return float((grid[i] + grid[j]) / 2)
        if i + 1 < n and difference[i] * difference[i + 1] < 0:
            fraction = difference[i] / (difference[i] - difference[i + 1])
            return float(grid[i] + fraction * (grid[i + 1] - grid[i]))

    logger.debug("Curves do not cross, using closest grid price")
    return float(grid[int(np.argmin(np.abs(difference)))])
