from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from analytics_logging import get_logger
from survey_design.sample_size_calculator import SampleSizeCalculator, SampleSizeInputs

logger = get_logger(__name__)


@dataclass
class Segment:
    name: str
    size_percentage: float
    confidence_level: float = 0.95
    margin_of_error: float = 0.05
    min_sample_size: int = 100
    recommended_sample_size: int = 0


@dataclass
class SegmentationAnalysis:
    segments: List[Segment]
    total_sample_needed: int
    feasibility_score: int
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SegmentationSampleCalculator:
    """Per-segment sample sizing and feasibility scoring for a segmentation plan"""

    def __init__(
        self,
        segments: List[Segment],
        total_population: float,
        response_rate: Optional[float] = None,
        cost_per_response: float = 5.00
    ):
        self.segments = segments
        self.total_population = total_population
        self.response_rate = response_rate
        self.cost_per_response = cost_per_response

    def calculate(self) -> SegmentationAnalysis:
        """Size every segment, writing ``recommended_sample_size`` back onto it"""
        total_sample_needed = 0

        for segment in self.segments:
            segment_population = segment.size_percentage / 100 * self.total_population
            calculator = SampleSizeCalculator(
                SampleSizeInputs(
                    population_size=segment_population,
                    confidence_level=segment.confidence_level,
                    margin_of_error=segment.margin_of_error,
                    expected_proportion=0.5,
                    response_rate=self.response_rate,
                ),
                cost_per_response=self.cost_per_response,
            )
            segment.recommended_sample_size = calculator.calculate().recommended_sample
            total_sample_needed += segment.recommended_sample_size

        feasibility_score = self.calculate_feasibility_score()
        recommendations = []

        if total_sample_needed > 5000:
            recommendations.append('Consider reducing number of segments or increasing budget')
        if feasibility_score < 70:
            recommendations.append('Segmentation plan may not be feasible - revise approach')
        if any(s.recommended_sample_size < 100 for s in self.segments):
            recommendations.append('Some segments have insufficient sample sizes for reliable analysis')

        logger.info("Segmentation plan sized", segments=len(self.segments),
                    total_sample_needed=total_sample_needed, feasibility_score=feasibility_score)

        return SegmentationAnalysis(
            segments=self.segments,
            total_sample_needed=total_sample_needed,
            feasibility_score=feasibility_score,
            recommendations=recommendations,
        )

    def calculate_feasibility_score(self) -> int:
        score = 100

        # Too many segments
        if len(self.segments) > 5:
            score -= (len(self.segments) - 5) * 10

        score -= 15 * sum(1 for s in self.segments if s.size_percentage < 10)
        score -= 10 * sum(1 for s in self.segments if s.margin_of_error < 0.05)

        return max(0, score)
