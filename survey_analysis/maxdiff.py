from dataclasses import dataclass, asdict
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from analytics_errors import InsufficientDataError, InvalidInputError
from analytics_logging import get_logger
from statistical_engine import StatisticalEngine

logger = get_logger(__name__)

MIN_FEATURES = 4
MIN_RESPONDENTS = 50
HIGH_UTILITY_SHARE = 20.0
QUESTION_TEXT = 'Which of these features is MOST important to you, and which is LEAST important?'


@dataclass(frozen=True)
class MaxDiffResponse:
    most_important: str
    least_important: str
    respondent_id: Optional[str] = None
    question_id: Optional[str] = None
    response_time_ms: Optional[float] = None


@dataclass(frozen=True)
class FeatureScore:
    feature: str
    rank: int
    utility_score: float
    share_of_preference: float
    confidence_interval: Tuple[float, float]
    significance_level: float
    best_count: int
    worst_count: int


@dataclass(frozen=True)
class PairwiseDifference:
    feature_a: str
    feature_b: str
    p_value: float
    adjusted_p_value: float
    is_significant: bool
    confidence_level: float


@dataclass(frozen=True)
class MaxDiffAnalysis:
    feature_scores: List[FeatureScore]
    significant_differences: List[PairwiseDifference]
    sample_size: int
    total_features: int
    questions_per_respondent: int
    completion_rate: float
    rotations_completed: int
    data_quality_score: float
    methodology: str = 'Maximum Difference Scaling'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MaxDiffAnalyzer:
    """Best-worst counting analysis of MaxDiff choice tasks"""

    def __init__(
        self,
        features: Sequence[str],
        responses: Sequence[MaxDiffResponse],
        significance_level: float = 0.05,
        engine: Optional[StatisticalEngine] = None
    ):
        if len(set(features)) != len(features):
            raise InvalidInputError("Feature names must be unique")
        self.features = list(features)
        self.responses = list(responses)
        self.significance_level = significance_level
        self.engine = engine or StatisticalEngine(default_alpha=significance_level)
        self._analysis: Optional[MaxDiffAnalysis] = None

    def analyze(self) -> MaxDiffAnalysis:
        if self._analysis is not None:
            return self._analysis

        if len(self.features) < MIN_FEATURES:
            raise InsufficientDataError(
                f"MaxDiff needs at least {MIN_FEATURES} features, got {len(self.features)}"
            )

        if not self.responses:
            raise InsufficientDataError("No MaxDiff responses")

        frame = self._response_frame()
        valid = frame[frame['valid'].astype(bool)]
        if valid.empty:
            raise InsufficientDataError("No valid MaxDiff responses")
        if len(valid) < len(frame):
            logger.debug("Skipped invalid MaxDiff responses", skipped=len(frame) - len(valid))

        scores = self._respondent_scores(valid)
        respondents = len(scores)
        utilities = scores.mean(axis=0)
        best_counts = valid['most_important'].value_counts()
        worst_counts = valid['least_important'].value_counts()

        positive_total = float(utilities.clip(lower=0).sum())
        ranked = sorted(self.features, key=lambda f: -utilities[f])

        feature_scores = []
        for rank, feature in enumerate(ranked, start=1):
            utility = float(utilities[feature])
            best = int(best_counts.get(feature, 0))
            worst = int(worst_counts.get(feature, 0))
            feature_scores.append(FeatureScore(
                feature=feature,
                rank=rank,
                utility_score=utility,
                share_of_preference=max(utility, 0.0) / positive_total * 100 if positive_total > 0 else 0.0,
                confidence_interval=self.engine.calculate_confidence_interval(scores[feature].values, 0.95),
                significance_level=self._significance_level(best + worst),
                best_count=best,
                worst_count=worst,
            ))

        answers_per_respondent = frame.groupby('respondent', sort=False).size()
        completion_rate = self._completion_rate(answers_per_respondent)

        self._analysis = MaxDiffAnalysis(
            feature_scores=feature_scores,
            significant_differences=self._pairwise_differences(ranked, scores),
            sample_size=respondents,
            total_features=len(self.features),
            questions_per_respondent=int(round(answers_per_respondent.mean())),
            completion_rate=completion_rate,
            rotations_completed=int(frame['question_id'].dropna().nunique()),
            data_quality_score=self._data_quality_score(frame, completion_rate),
        )

        logger.info("MaxDiff analysis completed", respondents=respondents,
                    features=len(self.features), top_feature=ranked[0])
        return self._analysis

    def _response_frame(self) -> pd.DataFrame:
        known = set(self.features)
        rows = []
        for index, response in enumerate(self.responses):
            rows.append({
                # Anonymous responses each count as their own respondent
                'respondent': response.respondent_id if response.respondent_id is not None else f'__anonymous_{index}',
                'question_id': response.question_id,
                'most_important': response.most_important,
                'least_important': response.least_important,
                'response_time_ms': response.response_time_ms,
                'valid': (
                    response.most_important in known
                    and response.least_important in known
                    and response.most_important != response.least_important
                ),
            })
        columns = ['respondent', 'question_id', 'most_important', 'least_important', 'response_time_ms', 'valid']
        return pd.DataFrame(rows, columns=columns)

    def _respondent_scores(self, valid: pd.DataFrame) -> pd.DataFrame:
        """Respondent x feature matrix of best-minus-worst counts"""
        best = pd.DataFrame({'respondent': valid['respondent'], 'feature': valid['most_important'], 'score': 1})
        worst = pd.DataFrame({'respondent': valid['respondent'], 'feature': valid['least_important'], 'score': -1})
        long = pd.concat([best, worst], ignore_index=True)
        matrix = long.pivot_table(index='respondent', columns='feature', values='score', aggfunc='sum', fill_value=0)
        return matrix.reindex(columns=self.features, fill_value=0).astype(float)

    def _significance_level(self, appearances: int) -> float:
        """Count heuristic: more best/worst mentions, more trust in the score"""
        if appearances >= 100:
            return 0.99
        if appearances >= 50:
            return 0.95
        if appearances >= 20:
            return 0.90
        if appearances >= 10:
            return 0.80
        return 0.50

    def _pairwise_differences(self, ranked: List[str], scores: pd.DataFrame) -> List[PairwiseDifference]:
        pairs = list(combinations(ranked, 2))
        p_values = [self.engine.paired_difference_test(scores[a].values, scores[b].values) for a, b in pairs]
        adjusted = self.engine.correct_multiple_comparisons(p_values, method='bonferroni')

        return [
            PairwiseDifference(
                feature_a=a,
                feature_b=b,
                p_value=p,
                adjusted_p_value=adj,
                is_significant=adj < self.significance_level,
                confidence_level=1 - adj,
            )
            for (a, b), p, adj in zip(pairs, p_values, adjusted)
        ]

    def _completion_rate(self, answers_per_respondent: pd.Series) -> float:
        expected = len(answers_per_respondent) * int(answers_per_respondent.max())
        return float(answers_per_respondent.sum() / expected * 100) if expected > 0 else 0.0

    def _data_quality_score(self, frame: pd.DataFrame, completion_rate: float) -> float:
        """Validity share minus penalties for rushed answers and incomplete respondents"""
        score = frame['valid'].mean() * 100

        times = frame['response_time_ms'].dropna().astype(float)
        if len(times) > 0 and times.mean() > 0:
            fast_share = float((times < times.mean() * 0.3).mean())
            score -= fast_share * 20

        score -= (100 - completion_rate) / 2
        return max(0.0, float(score))

    def generate_insights(self) -> List[str]:
        analysis = self.analyze()
        insights = []

        top = analysis.feature_scores[0]
        insights.append(f'"{top.feature}" is the most important feature with {top.utility_score:.2f} utility score')

        significant = [d for d in analysis.significant_differences if d.is_significant]
        if significant:
            insights.append(f'{len(significant)} feature pairs show statistically significant differences')

        top_three_share = sum(f.share_of_preference for f in analysis.feature_scores[:3])
        insights.append(f'Top 3 features account for {top_three_share:.1f}% of total preference')

        if analysis.data_quality_score > 80:
            insights.append('High data quality - results are reliable for decision making')
        elif analysis.data_quality_score < 60:
            insights.append('Low data quality - consider increasing sample size')

        return insights

    def generate_recommendations(self) -> List[str]:
        analysis = self.analyze()
        recommendations = ['Development Priority: Focus on these top features first:']
        for index, feature in enumerate(analysis.feature_scores[:3], start=1):
            recommendations.append(f'{index}. {feature.feature} ({feature.utility_score:.2f} utility score)')

        high_utility = [f for f in analysis.feature_scores if f.share_of_preference >= HIGH_UTILITY_SHARE]
        low_utility = [f for f in analysis.feature_scores if f.utility_score < 0]

        if high_utility:
            recommendations.append(
                f'Allocate 70% of development resources to high-utility features ({len(high_utility)} features)'
            )
        if low_utility:
            recommendations.append(f'Consider deprioritizing low-utility features ({len(low_utility)} features)')

        recommendations.append('Conduct follow-up research to validate feature importance with actual usage data')
        recommendations.append('Monitor feature importance changes as market evolves')
        return recommendations


@dataclass(frozen=True)
class MaxDiffQuestion:
    question_id: str
    features: Tuple[str, ...]
    question_text: str
    rotation_number: int


class MaxDiffDesigner:
    """Generates the rotating choice sets shown to each respondent"""

    def __init__(
        self,
        features: Sequence[str],
        features_per_question: int = 4,
        rotations_per_respondent: int = 5,
        seed: Optional[int] = None
    ):
        self.features = list(features)
        self.features_per_question = features_per_question
        self.rotations_per_respondent = rotations_per_respondent
        self.seed = seed

    def generate_questions(self) -> List[MaxDiffQuestion]:
        if not self.features:
            return []

        rng = np.random.default_rng(self.seed)
        shuffled = [self.features[i] for i in rng.permutation(len(self.features))]
        per_question = min(self.features_per_question, len(shuffled))

        questions = []
        for rotation in range(self.rotations_per_respondent):
            # Consecutive windows over one shuffle, so each rotation moves on to unseen features
            start = rotation * per_question % len(shuffled)
            selected = tuple(shuffled[(start + i) % len(shuffled)] for i in range(per_question))
            questions.append(MaxDiffQuestion(
                question_id=f'maxdiff_{rotation + 1}',
                features=selected,
                question_text=QUESTION_TEXT,
                rotation_number=rotation + 1,
            ))
        return questions

    def validate_questions(self, questions: Sequence[MaxDiffQuestion]) -> List[str]:
        errors = []

        if len(self.features) < MIN_FEATURES:
            errors.append(f'Minimum {MIN_FEATURES} features required for MaxDiff analysis')
        if self.features_per_question < 3 or self.features_per_question > 5:
            errors.append('Features per question should be between 3-5')
        if self.rotations_per_respondent < 3:
            errors.append('Minimum 3 rotations per respondent recommended')

        covered = {feature for question in questions for feature in question.features}
        uncovered = [f for f in self.features if f not in covered]
        if uncovered:
            errors.append(f'Some features not covered in questions: {", ".join(uncovered)}')

        return errors

    def question_templates(self) -> List[Dict[str, Any]]:
        return [
            {
                'id': question.question_id,
                'type': 'maxdiff',
                'text': question.question_text,
                'options': list(question.features),
                'required': True,
            }
            for question in self.generate_questions()
        ]


def validate_maxdiff_data(
    responses: Sequence[MaxDiffResponse],
    features: Optional[Sequence[str]] = None
) -> List[str]:
    errors = []

    if features is not None and len(features) < MIN_FEATURES:
        errors.append(f'Minimum {MIN_FEATURES} features required for MaxDiff analysis')

    if not responses:
        errors.append('No responses to analyze')
        return errors

    respondents = {
        r.respondent_id if r.respondent_id is not None else f'__anonymous_{i}'
        for i, r in enumerate(responses)
    }
    if len(respondents) < MIN_RESPONDENTS:
        errors.append(f'Sample size too small: {len(respondents)}. Minimum recommended: {MIN_RESPONDENTS}')

    known = set(features) if features is not None else None
    invalid = [
        r for r in responses
        if not r.most_important or not r.least_important or r.most_important == r.least_important
        or (known is not None and (r.most_important not in known or r.least_important not in known))
    ]
    if invalid:
        errors.append(f'{len(invalid)} invalid responses found')

    times = [r.response_time_ms for r in responses if r.response_time_ms is not None]
    if times:
        mean_time = sum(times) / len(times)
        too_fast = sum(1 for t in times if t < mean_time * 0.2)
        if too_fast > len(responses) * 0.1:
            errors.append(f'{too_fast} responses appear too fast ({too_fast / len(responses) * 100:.1f}%)')

    return errors
