import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from analytics_logging import get_logger
from statistical_engine import StatisticalEngine

logger = get_logger(__name__)

Z_SCORES = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}
DEFAULT_Z_SCORE = 1.96
RESPONSE_BUFFER = 1.2
MIN_PER_SEGMENT = 100
DEFAULT_COST_PER_RESPONSE = 5.00
DEFAULT_RESPONSE_RATE = 0.20

SAMPLE_SIZE_GUIDELINES = {
    'exploratory': {'min': 50, 'max': 100, 'description': 'Initial exploration and hypothesis generation'},
    'quantitative': {'min': 200, 'max': 400, 'description': 'Standard quantitative research'},
    'segmentation': {'min': 400, 'max': 1000, 'description': 'Market segmentation analysis'},
    'national_representative': {'min': 1000, 'max': 2000, 'description': 'Nationally representative studies'},
    'per_segment_minimum': 100,
    'per_subgroup_minimum': 30,
    'confidence_levels': {
        0.90: {'z_score': 1.645, 'description': '90% confidence - exploratory'},
        0.95: {'z_score': 1.96, 'description': '95% confidence - standard'},
        0.99: {'z_score': 2.576, 'description': '99% confidence - high stakes'},
    },
    'margin_of_error': {
        0.03: {'description': '±3% - High precision'},
        0.05: {'description': '±5% - Standard precision'},
        0.10: {'description': '±10% - Acceptable precision'},
    },
}

_RESEARCH_TYPES = {
    'exploratory': 'exploratory',
    'quantitative': 'quantitative',
    'segmentation': 'segmentation',
    'national': 'national_representative',
}


@dataclass
class SampleSizeInputs:
    population_size: float
    confidence_level: float
    margin_of_error: float
    expected_proportion: float = 0.5
    response_rate: Optional[float] = None
    design_effect: float = 1.0


@dataclass
class SubgroupAnalysis:
    min_per_segment: int
    total_needed: int
    segments_possible: int


@dataclass
class StatisticalPower:
    power: float
    effect_size: float
    alpha: float
    beta: float


@dataclass
class CostEstimate:
    cost_per_response: float
    total_cost: float
    cost_per_segment: float


@dataclass
class QualityMetrics:
    expected_completion_rate: float
    expected_data_quality_score: int
    reliability_level: str


@dataclass
class SampleSizeCalculation:
    inputs: SampleSizeInputs
    z_score: float
    sample_size_infinite: int
    sample_size_adjusted: int
    sample_size_design_adjusted: int
    recommended_sample: int
    subgroup_analysis: SubgroupAnalysis
    statistical_power: StatisticalPower
    cost_estimate: CostEstimate
    quality_metrics: QualityMetrics

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def lookup_z_score(confidence_level: float) -> Optional[float]:
    """Table z-score for a confidence level, tolerant of float noise"""
    for level, z in Z_SCORES.items():
        if math.isclose(confidence_level, level, abs_tol=1e-9):
            return z
    return None


def _ceil(value: float) -> int:
    # Round away representation error before ceiling (371 / 0.2 * 1.2 must stay 2226)
    return int(math.ceil(round(value, 9)))


class SampleSizeCalculator:
    """Closed-form survey sample size, cost and quality estimation"""

    def __init__(
        self,
        inputs: SampleSizeInputs,
        cost_per_response: float = DEFAULT_COST_PER_RESPONSE,
        default_response_rate: float = DEFAULT_RESPONSE_RATE
    ):
        self.inputs = inputs
        self.cost_per_response = cost_per_response
        self.default_response_rate = default_response_rate

    def calculate(self) -> SampleSizeCalculation:
        """Compute the sample size bundle.

        Inputs are a precondition: run ``validate`` first. Out-of-range
        values produce meaningless numbers rather than an exception.
        """
        z_score = self._z_score(self.inputs.confidence_level)

        sample_size_infinite = self._infinite_sample_size(
            z_score, self.inputs.margin_of_error, self.inputs.expected_proportion
        )
        sample_size_adjusted = self._finite_population_correction(
            sample_size_infinite, self.inputs.population_size
        )
        sample_size_design_adjusted = _ceil(sample_size_adjusted * (self.inputs.design_effect or 1.0))
        recommended_sample = self._add_buffer(sample_size_design_adjusted, self.inputs.response_rate)

        return SampleSizeCalculation(
            inputs=self.inputs,
            z_score=z_score,
            sample_size_infinite=sample_size_infinite,
            sample_size_adjusted=sample_size_adjusted,
            sample_size_design_adjusted=sample_size_design_adjusted,
            recommended_sample=recommended_sample,
            subgroup_analysis=self._subgroup_analysis(recommended_sample),
            statistical_power=self._statistical_power(recommended_sample),
            cost_estimate=self._cost_estimate(recommended_sample),
            quality_metrics=self._quality_metrics(recommended_sample),
        )

    def validate(self) -> List[str]:
        """Return human-readable input errors; empty when inputs are usable"""
        return validate_sample_size_inputs(self.inputs)

    def _z_score(self, confidence_level: float) -> float:
        z = lookup_z_score(confidence_level)
        if z is None:
            logger.debug("Unknown confidence level, using default z-score",
                         confidence_level=confidence_level, z_score=DEFAULT_Z_SCORE)
            return DEFAULT_Z_SCORE
        return z

    def _infinite_sample_size(self, z_score: float, margin_of_error: float, proportion: float) -> int:
        return _ceil(z_score ** 2 * proportion * (1 - proportion) / margin_of_error ** 2)

    def _finite_population_correction(self, sample_size: int, population_size: float) -> int:
        if population_size <= 0:
            return sample_size
        return _ceil(sample_size / (1 + (sample_size - 1) / population_size))

    def _add_buffer(self, sample_size: int, response_rate: Optional[float]) -> int:
        rate = response_rate if response_rate and response_rate > 0 else self.default_response_rate
        return _ceil(sample_size / rate * RESPONSE_BUFFER)

    def _subgroup_analysis(self, total_sample: int) -> SubgroupAnalysis:
        segments_possible = total_sample // MIN_PER_SEGMENT
        return SubgroupAnalysis(
            min_per_segment=MIN_PER_SEGMENT,
            total_needed=segments_possible * MIN_PER_SEGMENT,
            segments_possible=segments_possible,
        )

    def _statistical_power(self, sample_size: int) -> StatisticalPower:
        power = 0.80
        return StatisticalPower(
            power=power,
            effect_size=math.sqrt(2 / sample_size) if sample_size > 0 else 0.0,
            alpha=0.05,
            beta=round(1 - power, 10),
        )

    def _cost_estimate(self, sample_size: int) -> CostEstimate:
        total_cost = sample_size * self.cost_per_response
        return CostEstimate(
            cost_per_response=self.cost_per_response,
            total_cost=total_cost,
            cost_per_segment=total_cost / max(1, sample_size // MIN_PER_SEGMENT),
        )

    def _quality_metrics(self, sample_size: int) -> QualityMetrics:
        if sample_size >= 1000:
            return QualityMetrics(0.90, 90, 'Excellent')
        if sample_size >= 400:
            return QualityMetrics(0.88, 85, 'Very Good')
        if sample_size < 200:
            return QualityMetrics(0.80, 75, 'Fair')
        return QualityMetrics(0.85, 80, 'Good')

    def generate_insights(self) -> List[str]:
        calculation = self.calculate()
        insights = []

        if calculation.recommended_sample >= 1000:
            insights.append('Large sample size enables robust statistical analysis and reliable insights')
        elif calculation.recommended_sample >= 400:
            insights.append('Good sample size for most statistical analyses and segmentation')
        elif calculation.recommended_sample >= 200:
            insights.append('Adequate sample size for basic analysis, consider increasing for segmentation')
        else:
            insights.append('Small sample size - results may not be statistically reliable')

        if self.inputs.confidence_level >= 0.95:
            insights.append('High confidence level provides reliable results for decision making')
        else:
            insights.append('Lower confidence level - consider increasing for critical decisions')

        if self.inputs.margin_of_error <= 0.03:
            insights.append('Low margin of error provides precise estimates')
        elif self.inputs.margin_of_error > 0.10:
            insights.append('High margin of error - consider increasing sample size for precision')

        segments = calculation.subgroup_analysis.segments_possible
        if segments >= 4:
            insights.append(f'Can analyze up to {segments} segments reliably')
        else:
            insights.append('Limited segmentation capability - consider increasing sample size')

        return insights

    def generate_recommendations(self) -> List[str]:
        calculation = self.calculate()
        recommendations = []

        if calculation.recommended_sample < 200:
            recommendations.append('Increase sample size to at least 200 for basic reliability')
        if calculation.subgroup_analysis.segments_possible < 3:
            recommendations.append('Increase sample size to enable meaningful segmentation analysis')
        if calculation.cost_estimate.total_cost > 10000:
            recommendations.append('Consider reducing sample size or using more cost-effective methods')
        if calculation.quality_metrics.expected_data_quality_score < 80:
            recommendations.append('Improve data collection methods to increase quality score')
        if self.inputs.response_rate and self.inputs.response_rate < 0.15:
            recommendations.append('Improve response rate through better targeting and incentives')

        return recommendations


def validate_sample_size_inputs(inputs: SampleSizeInputs) -> List[str]:
    errors = []

    if lookup_z_score(inputs.confidence_level) is None:
        errors.append('Confidence level must be 0.90, 0.95, or 0.99')
    if inputs.margin_of_error <= 0 or inputs.margin_of_error > 0.5:
        errors.append('Margin of error must be between 0 and 50%')
    if inputs.expected_proportion < 0 or inputs.expected_proportion > 1:
        errors.append('Expected proportion must be between 0 and 1')
    if inputs.population_size < 0:
        errors.append('Population size must be positive')
    if inputs.response_rate is not None and (inputs.response_rate <= 0 or inputs.response_rate > 1):
        errors.append('Response rate must be between 0 and 1')
    if inputs.design_effect is not None and inputs.design_effect < 1:
        errors.append('Design effect must be at least 1')

    return errors


def get_recommended_sample_size(research_type: str) -> int:
    """Upper end of the industry guideline for a research type"""
    key = _RESEARCH_TYPES.get(research_type, 'quantitative')
    return SAMPLE_SIZE_GUIDELINES[key]['max']


def calculate_minimum_sample_for_segments(segment_count: int) -> int:
    return segment_count * SAMPLE_SIZE_GUIDELINES['per_segment_minimum']


def calculate_power_analysis(
    sample_size: int,
    effect_size: float,
    alpha: float = 0.05
) -> Dict[str, Any]:
    """Achieved power of a two-sided one-sample z-test with guidance text"""
    power = StatisticalEngine(default_alpha=alpha).calculate_statistical_power(
        effect_size, sample_size, significance_level=alpha
    )

    recommendation = 'Adequate power for detecting effects'
    if power < 0.8:
        recommendation = 'Low power - consider increasing sample size'
    elif power > 0.95:
        recommendation = 'Very high power - may be over-sampling'

    return {
        'power': power,
        'beta': 1 - power,
        'recommendation': recommendation,
    }
