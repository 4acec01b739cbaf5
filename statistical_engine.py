import numpy as np
from scipy import stats
from scipy.special import erf
from statsmodels.stats.multitest import multipletests
from statsmodels.stats.power import NormalIndPower
from typing import List, Tuple, Sequence
from dataclasses import dataclass
from math import sqrt

from analytics_logging import get_logger

logger = get_logger(__name__)

_CORRECTION_METHODS = {
    'bonferroni': 'bonferroni',
    'holm': 'holm',
    'benjamini_hochberg': 'fdr_bh',
}


@dataclass
class OutlierSummary:
    q1: float
    q3: float
    iqr: float
    lower_fence: float
    upper_fence: float
    outlier_count: int
    outlier_fraction: float


class StatisticalEngine:
    """Core statistical helpers shared by the survey analyzers"""

    def __init__(self, default_alpha: float = 0.05):
        self.default_alpha = default_alpha
        self._power_solver = NormalIndPower()

    def normal_cdf(self, x: float, mean: float, std: float) -> float:
        """P(X <= x) for X ~ N(mean, std^2), via the error function"""
        if std <= 0:
            # Degenerate distribution: all mass at the mean
            return 1.0 if x >= mean else 0.0
        z = (x - mean) / std
        return float(0.5 * (1 + erf(z / sqrt(2))))

    def proportion_effect_size(self, observed: float, expected: float) -> float:
        """Signed Cohen's h between two proportions"""
        p1 = float(np.clip(observed, 0.0, 1.0))
        p2 = float(np.clip(expected, 0.0, 1.0))
        return float(2 * (np.arcsin(np.sqrt(p1)) - np.arcsin(np.sqrt(p2))))

    def iqr_outliers(self, values: Sequence[float]) -> OutlierSummary:
        """Tukey fences using order-statistic quartiles"""
        data = np.sort(np.asarray(values, dtype=float))
        n = len(data)
        if n == 0:
            return OutlierSummary(0.0, 0.0, 0.0, 0.0, 0.0, 0, 0.0)

        q1 = float(data[int(np.floor(n * 0.25))])
        q3 = float(data[min(int(np.floor(n * 0.75)), n - 1)])
        iqr = q3 - q1
        lower, upper = q1 - 1.5 * iqr, q3 + 1.5 * iqr
        outliers = int(np.sum((data < lower) | (data > upper)))

        return OutlierSummary(
            q1=q1,
            q3=q3,
            iqr=iqr,
            lower_fence=lower,
            upper_fence=upper,
            outlier_count=outliers,
            outlier_fraction=outliers / n
        )

    def robustness_score(self, values: Sequence[float], min_sample_size: int = 30) -> float:
        """1 - 2 * outlier fraction, fixed at 0.5 for small samples"""
        if len(values) < min_sample_size:
            return 0.5
        summary = self.iqr_outliers(values)
        return max(0.0, 1 - summary.outlier_fraction * 2)

    def correct_multiple_comparisons(
        self,
        p_values: List[float],
        method: str = 'bonferroni'
    ) -> List[float]:
        """Apply multiple comparison corrections"""
        if method not in _CORRECTION_METHODS:
            raise ValueError(f"Unknown correction method: {method}")
        if len(p_values) == 0:
            return []

        _, corrected, _, _ = multipletests(p_values, alpha=self.default_alpha, method=_CORRECTION_METHODS[method])
        return [float(p) for p in corrected]

    def calculate_statistical_power(
        self,
        effect_size: float,
        sample_size: int,
        significance_level: float = None
    ) -> float:
        """Power of a two-sided one-sample z-test"""
        alpha = significance_level or self.default_alpha
        if sample_size <= 0 or effect_size == 0:
            return alpha
        power = self._power_solver.power(
            effect_size=abs(effect_size),
            nobs1=sample_size,
            alpha=alpha,
            ratio=0,
            alternative='two-sided'
        )
        return float(power)

    def calculate_confidence_interval(
        self,
        data: Sequence[float],
        confidence_level: float = 0.95
    ) -> Tuple[float, float]:
        """Parametric t interval for the mean"""
        values = np.asarray(data, dtype=float)
        n = len(values)
        if n == 0:
            return (0.0, 0.0)
        mean = float(np.mean(values))
        if n < 2 or np.all(values == values[0]):
            return (mean, mean)

        sem = stats.sem(values)
        lower, upper = stats.t.interval(confidence_level, n - 1, loc=mean, scale=sem)
        return (float(lower), float(upper))

    def paired_difference_test(self, first: Sequence[float], second: Sequence[float]) -> float:
        """Two-sided paired t-test p-value with guards for degenerate differences"""
        a = np.asarray(first, dtype=float)
        b = np.asarray(second, dtype=float)
        differences = a - b

        if len(differences) < 2:
            return 1.0
        if np.all(differences == differences[0]):
            # Constant differences have zero variance
            return 1.0 if differences[0] == 0 else 0.0

        _, p_value = stats.ttest_rel(a, b)
        return float(p_value)
