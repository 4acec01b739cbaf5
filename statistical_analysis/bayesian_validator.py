import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from analytics_errors import InsufficientDataError, InvalidInputError
from analytics_logging import get_logger
from statistical_engine import StatisticalEngine
from survey_models import SurveyData

logger = get_logger(__name__)

MIN_VARIANCE = 1e-9
ROBUST_SAMPLE_SIZE = 30
SMALL_SAMPLE_SIZE = 100
OUTLIER_RESPONSES = (1.0, 1.0, 1.0, 5.0, 5.0, 5.0)

# Reference value each metric's posterior is tested against
REFERENCE_VALUES = {
    'purchase_intent': 0.5,
    'price_sensitivity': 0.5,
    'brand_preference': 0.4,
}


class PriorDistribution(Enum):
    BETA = "beta"
    NORMAL = "normal"
    GAMMA = "gamma"
    UNIFORM = "uniform"


@dataclass(frozen=True)
class Prior:
    distribution: PriorDistribution
    mean: float
    variance: float
    parameters: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def beta(cls, alpha: float, beta: float) -> "Prior":
        if alpha <= 0 or beta <= 0:
            raise InvalidInputError(f"Beta parameters must be positive, got alpha={alpha}, beta={beta}")
        total = alpha + beta
        return cls(
            distribution=PriorDistribution.BETA,
            mean=alpha / total,
            variance=alpha * beta / (total ** 2 * (total + 1)),
            parameters={'alpha': float(alpha), 'beta': float(beta)},
        )

    @classmethod
    def beta_from_moments(cls, mean: float, variance: float) -> "Prior":
        """Method-of-moments Beta; requires 0 < mean < 1 and variance < mean(1 - mean)"""
        if not _valid_beta_moments(mean, variance):
            raise InvalidInputError(f"No Beta distribution has mean={mean} and variance={variance}")
        concentration = mean * (1 - mean) / variance - 1
        return cls.beta(mean * concentration, (1 - mean) * concentration)

    @classmethod
    def normal(cls, mean: float, variance: float) -> "Prior":
        if variance <= 0:
            raise InvalidInputError(f"Normal prior variance must be positive, got {variance}")
        return cls(PriorDistribution.NORMAL, float(mean), float(variance), {})

    @classmethod
    def gamma(cls, shape: float, scale: float) -> "Prior":
        if shape <= 0 or scale <= 0:
            raise InvalidInputError(f"Gamma parameters must be positive, got shape={shape}, scale={scale}")
        return cls(
            distribution=PriorDistribution.GAMMA,
            mean=shape * scale,
            variance=shape * scale ** 2,
            parameters={'shape': float(shape), 'scale': float(scale)},
        )

    @classmethod
    def uniform(cls, lower: float = 0.0, upper: float = 1.0) -> "Prior":
        if upper <= lower:
            raise InvalidInputError(f"Uniform prior needs lower < upper, got [{lower}, {upper}]")
        return cls(
            distribution=PriorDistribution.UNIFORM,
            mean=(lower + upper) / 2,
            variance=(upper - lower) ** 2 / 12,
            parameters={'lower': float(lower), 'upper': float(upper)},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'distribution': self.distribution.value,
            'mean': self.mean,
            'variance': self.variance,
            'parameters': dict(self.parameters),
        }


def default_priors() -> Dict[str, Prior]:
    return {
        'purchase_intent': Prior.beta(3, 7),
        'price_sensitivity': Prior.normal(0.5, 0.1),
        'brand_preference': Prior.beta(4, 6),
        'feature_importance': Prior.gamma(2, 0.3),
    }


@dataclass(frozen=True)
class CredibleInterval:
    lower: float
    upper: float
    probability: float


@dataclass(frozen=True)
class ValidationResult:
    metric: str
    value: float
    confidence: float
    credible_interval: CredibleInterval
    bayesian_p_value: float
    effect_size: float
    robustness: float
    multiple_testing_correction: float
    sample_size: int
    posterior_parameters: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ComprehensiveValidation:
    purchase_intent: ValidationResult
    price_sensitivity: ValidationResult
    brand_preference: ValidationResult
    overall_confidence: float
    recommendations: List[str]
    sample_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SensitivityAnalysis:
    baseline_value: float
    prior_sensitivity: float
    sample_size_sensitivity: float
    outlier_sensitivity: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BayesianValidator:
    """Conjugate-prior validation of survey metrics.

    An instance is one analysis session: it owns the prior map and a
    comparison counter that tightens the Bonferroni threshold with every
    validation it runs. Not internally thread-safe; callers sharing an
    instance must serialize access. Use ``reset`` to start a new session.
    """

    def __init__(
        self,
        positive_threshold: float = 4.0,
        credible_interval_z: float = 1.96,
        significance_level: float = 0.05,
        engine: Optional[StatisticalEngine] = None
    ):
        self.positive_threshold = positive_threshold
        self.credible_interval_z = credible_interval_z
        self.significance_level = significance_level
        self.engine = engine or StatisticalEngine(default_alpha=significance_level)
        self.priors: Dict[str, Prior] = default_priors()
        self.multiple_comparisons = 0
        self.sample_size = 0

    def reset(self, restore_priors: bool = False) -> None:
        """Start a new session: clear the comparison counter, optionally the priors"""
        self.multiple_comparisons = 0
        self.sample_size = 0
        if restore_priors:
            self.priors = default_priors()

    def validate_purchase_intent(self, data: Union[SurveyData, Sequence[float]]) -> ValidationResult:
        """Beta-Binomial validation of the share of positive purchase intent"""
        return self._validate_proportion('purchase_intent', _as_survey_data(data))

    def validate_price_sensitivity(self, data: Union[SurveyData, Sequence[float]]) -> ValidationResult:
        """Normal-Normal validation of the mean price sensitivity"""
        survey = _as_survey_data(data)
        metric = 'price_sensitivity'
        responses = np.asarray(survey.responses, dtype=float)
        n = len(responses)
        prior_mean, prior_variance = self._normal_moments(self.priors[metric])

        if n == 0:
            posterior_mean, posterior_variance = prior_mean, prior_variance
            sample_variance = 0.0
        else:
            sample_mean = float(np.mean(responses))
            sample_variance = float(np.var(responses))
            if sample_variance < MIN_VARIANCE:
                logger.debug("Zero sample variance, flooring", metric=metric, floor=MIN_VARIANCE)
                sample_variance = MIN_VARIANCE
            precision = 1 / prior_variance + n / sample_variance
            posterior_mean = (prior_mean / prior_variance + n * sample_mean / sample_variance) / precision
            posterior_variance = 1 / precision

        posterior_std = math.sqrt(posterior_variance)
        interval = CredibleInterval(
            lower=posterior_mean - self.credible_interval_z * posterior_std,
            upper=posterior_mean + self.credible_interval_z * posterior_std,
            probability=self._interval_probability(),
        )

        return self._build_result(
            metric=metric,
            responses=responses,
            posterior_mean=posterior_mean,
            posterior_std=posterior_std,
            interval=interval,
            posterior_parameters={
                'mean': posterior_mean,
                'variance': posterior_variance,
                'sample_variance': sample_variance,
            },
        )

    def validate_brand_preference(self, data: Union[SurveyData, Sequence[float]]) -> ValidationResult:
        """Beta-Binomial validation of the share of positive brand preference"""
        return self._validate_proportion('brand_preference', _as_survey_data(data))

    def validate_comprehensive(self, data: Union[SurveyData, Sequence[float]]) -> ComprehensiveValidation:
        survey = _as_survey_data(data)
        self.sample_size = survey.sample_size

        purchase_intent = self.validate_purchase_intent(survey)
        price_sensitivity = self.validate_price_sensitivity(survey)
        brand_preference = self.validate_brand_preference(survey)

        overall_confidence = (
            purchase_intent.confidence + price_sensitivity.confidence + brand_preference.confidence
        ) / 3

        recommendations = self._generate_recommendations(
            purchase_intent, price_sensitivity, brand_preference, survey.sample_size
        )

        logger.info("Comprehensive validation completed", sample_size=survey.sample_size,
                    overall_confidence=round(overall_confidence, 4),
                    comparisons=self.multiple_comparisons)

        return ComprehensiveValidation(
            purchase_intent=purchase_intent,
            price_sensitivity=price_sensitivity,
            brand_preference=brand_preference,
            overall_confidence=overall_confidence,
            recommendations=recommendations,
            sample_size=survey.sample_size,
        )

    def perform_sensitivity_analysis(self, data: Union[SurveyData, Sequence[float]]) -> SensitivityAnalysis:
        """How far the purchase-intent estimate moves under prior, sample and outlier perturbations"""
        survey = _as_survey_data(data)
        baseline = self.validate_purchase_intent(survey)

        original_prior = self.priors['purchase_intent']
        alpha, beta = self._beta_parameters(original_prior)
        concentration = alpha + beta
        # Shift the Beta actually used for validation, not the raw prior mean
        shifted_mean = min(alpha / concentration * 1.5, 0.99)
        try:
            self.priors['purchase_intent'] = Prior.beta(
                shifted_mean * concentration, (1 - shifted_mean) * concentration
            )
            shifted = self.validate_purchase_intent(survey)
        finally:
            self.priors['purchase_intent'] = original_prior

        half = survey.with_responses(survey.responses[:survey.sample_size // 2])
        half_result = self.validate_purchase_intent(half)

        with_outliers = survey.with_responses(survey.responses + OUTLIER_RESPONSES)
        outlier_result = self.validate_purchase_intent(with_outliers)

        return SensitivityAnalysis(
            baseline_value=baseline.value,
            prior_sensitivity=abs(baseline.value - shifted.value),
            sample_size_sensitivity=abs(baseline.value - half_result.value),
            outlier_sensitivity=abs(baseline.value - outlier_result.value),
        )

    def calculate_bayes_factor(
        self,
        data: Union[SurveyData, Sequence[float]],
        model1: str,
        model2: str
    ) -> float:
        """Approximate Bayes factor of two metric priors as competing models.

        Each model is a Gaussian centred on its prior mean with the sample
        variance; the factor is the likelihood ratio. This is a heuristic,
        not a marginal-likelihood Bayes factor.
        """
        for model in (model1, model2):
            if model not in self.priors:
                raise InvalidInputError(f"Unknown model: {model}")

        responses = np.asarray(_as_survey_data(data).responses, dtype=float)
        if len(responses) == 0:
            raise InsufficientDataError("Bayes factor needs at least one response")

        variance = max(float(np.var(responses)), MIN_VARIANCE)
        log_ratio = (
            self._log_likelihood(responses, self.priors[model1].mean, variance)
            - self._log_likelihood(responses, self.priors[model2].mean, variance)
        )
        return float(np.exp(np.clip(log_ratio, -700, 700)))

    def update_priors(self, historical_data: Mapping[str, Sequence[float]]) -> None:
        """Empirical Bayes: average each known prior's moments with historical ones"""
        for metric, values in historical_data.items():
            existing = self.priors.get(metric)
            if existing is None:
                logger.debug("Skipping historical data for unknown metric", metric=metric)
                continue
            if len(values) == 0:
                continue

            data = np.asarray(values, dtype=float)
            mean = (existing.mean + float(np.mean(data))) / 2
            variance = (existing.variance + float(np.var(data))) / 2

            updated = _prior_from_moments(existing.distribution, mean, variance)
            if updated is None:
                logger.warning("Historical moments do not fit prior family, keeping prior",
                               metric=metric, distribution=existing.distribution.value,
                               mean=mean, variance=variance)
                continue
            self.priors[metric] = updated

    def set_prior(self, metric: str, prior: Prior) -> None:
        self.priors[metric] = prior

    def get_priors(self) -> Dict[str, Prior]:
        return dict(self.priors)

    def _validate_proportion(self, metric: str, survey: SurveyData) -> ValidationResult:
        responses = np.asarray(survey.responses, dtype=float)
        positives = int(np.sum(responses >= self.positive_threshold))
        negatives = len(responses) - positives

        alpha_prior, beta_prior = self._beta_parameters(self.priors[metric])
        alpha = alpha_prior + positives
        beta = beta_prior + negatives
        total = alpha + beta

        posterior_mean = alpha / total
        posterior_std = math.sqrt(alpha * beta / (total ** 2 * (total + 1)))
        interval = CredibleInterval(
            lower=max(0.0, posterior_mean - self.credible_interval_z * posterior_std),
            upper=min(1.0, posterior_mean + self.credible_interval_z * posterior_std),
            probability=self._interval_probability(),
        )

        return self._build_result(
            metric=metric,
            responses=responses,
            posterior_mean=posterior_mean,
            posterior_std=posterior_std,
            interval=interval,
            posterior_parameters={'alpha': alpha, 'beta': beta},
        )

    def _build_result(
        self,
        metric: str,
        responses: np.ndarray,
        posterior_mean: float,
        posterior_std: float,
        interval: CredibleInterval,
        posterior_parameters: Dict[str, float]
    ) -> ValidationResult:
        reference = REFERENCE_VALUES[metric]
        p_value = self.engine.normal_cdf(reference, posterior_mean, posterior_std)
        correction = self._multiple_testing_correction()

        logger.debug("Validated metric", metric=metric, sample_size=len(responses),
                     posterior_mean=round(posterior_mean, 4), comparisons=self.multiple_comparisons)

        return ValidationResult(
            metric=metric,
            value=float(posterior_mean),
            confidence=1 - p_value,
            credible_interval=interval,
            bayesian_p_value=p_value,
            effect_size=self.engine.proportion_effect_size(posterior_mean, reference),
            robustness=self.engine.robustness_score(responses, ROBUST_SAMPLE_SIZE),
            multiple_testing_correction=correction,
            sample_size=len(responses),
            posterior_parameters={k: float(v) for k, v in posterior_parameters.items()},
        )

    def _multiple_testing_correction(self) -> float:
        self.multiple_comparisons += 1
        return min(1.0, self.significance_level / self.multiple_comparisons)

    def _interval_probability(self) -> float:
        return round(2 * self.engine.normal_cdf(self.credible_interval_z, 0.0, 1.0) - 1, 4)

    def _beta_parameters(self, prior: Prior) -> Tuple[float, float]:
        if prior.distribution is PriorDistribution.BETA and 'alpha' in prior.parameters:
            return prior.parameters['alpha'], prior.parameters['beta']
        if prior.distribution is PriorDistribution.UNIFORM:
            return 1.0, 1.0
        if _valid_beta_moments(prior.mean, prior.variance):
            concentration = prior.mean * (1 - prior.mean) / prior.variance - 1
            return prior.mean * concentration, (1 - prior.mean) * concentration
        logger.debug("Prior cannot be expressed as a Beta, using Beta(1, 1)",
                     distribution=prior.distribution.value)
        return 1.0, 1.0

    def _normal_moments(self, prior: Prior) -> Tuple[float, float]:
        # Gamma and uniform priors are moment-matched to a Normal
        return prior.mean, max(prior.variance, MIN_VARIANCE)

    @staticmethod
    def _log_likelihood(responses: np.ndarray, mean: float, variance: float) -> float:
        n = len(responses)
        return float(-n * math.log(2 * math.pi * variance) / 2 - np.sum((responses - mean) ** 2) / (2 * variance))

    def _generate_recommendations(
        self,
        purchase_intent: ValidationResult,
        price_sensitivity: ValidationResult,
        brand_preference: ValidationResult,
        sample_size: int
    ) -> List[str]:
        recommendations = []

        if purchase_intent.confidence > 0.8:
            recommendations.append('High confidence in purchase intent - proceed with product development')
        elif purchase_intent.confidence < 0.6:
            recommendations.append('Low confidence in purchase intent - consider additional market research')

        if price_sensitivity.value > 0.7:
            recommendations.append('High price sensitivity detected - consider competitive pricing strategy')
        elif price_sensitivity.value < 0.3:
            recommendations.append('Low price sensitivity - premium pricing strategy recommended')

        if brand_preference.confidence > 0.8 and brand_preference.value > 0.6:
            recommendations.append('Strong brand preference - invest in brand building and marketing')
        elif brand_preference.value < 0.4:
            recommendations.append('Weak brand preference - focus on product differentiation')

        min_robustness = min(purchase_intent.robustness, price_sensitivity.robustness, brand_preference.robustness)
        if min_robustness < 0.7:
            recommendations.append('Results may be sensitive to outliers - consider robust statistical methods')

        if sample_size < SMALL_SAMPLE_SIZE:
            recommendations.append('Small sample size - consider increasing sample size for more reliable results')

        return recommendations


def format_validation_result(result: ValidationResult) -> str:
    """Human-readable summary of a validation result"""
    interval = result.credible_interval
    lines = [
        f"{result.metric.replace('_', ' ').upper()}:",
        f"  Value: {result.value * 100:.1f}%",
        f"  Confidence: {result.confidence * 100:.1f}%",
        f"  {interval.probability * 100:.0f}% Credible Interval: "
        f"[{interval.lower * 100:.1f}%, {interval.upper * 100:.1f}%]",
        f"  Bayesian p-value: {result.bayesian_p_value:.4f}",
        f"  Effect Size: {result.effect_size:.3f}",
        f"  Robustness: {result.robustness * 100:.1f}%",
        f"  Multiple Testing Correction: {result.multiple_testing_correction * 100:.1f}%",
    ]
    return "\n".join(lines)


def _as_survey_data(data: Union[SurveyData, Sequence[float]]) -> SurveyData:
    if isinstance(data, SurveyData):
        return data
    return SurveyData.from_responses(data)


def _valid_beta_moments(mean: float, variance: float) -> bool:
    return 0 < mean < 1 and 0 < variance < mean * (1 - mean)


def _prior_from_moments(distribution: PriorDistribution, mean: float, variance: float) -> Optional[Prior]:
    if distribution is PriorDistribution.BETA:
        return Prior.beta_from_moments(mean, variance) if _valid_beta_moments(mean, variance) else None
    if distribution is PriorDistribution.GAMMA:
        if mean <= 0 or variance <= 0:
            return None
        return Prior.gamma(mean ** 2 / variance, variance / mean)
    if distribution is PriorDistribution.UNIFORM:
        if variance <= 0:
            return None
        half_width = math.sqrt(3 * variance)
        return Prior.uniform(mean - half_width, mean + half_width)
    if variance <= 0:
        return None
    return Prior.normal(mean, variance)
