"""Statistical helpers shared by the analyses.

Each test returns a :class:`TestResult` so reports can tabulate tests from
different families side by side. The heavy lifting is scipy and statsmodels;
this module only normalizes inputs (dropping missing values, checking sample
sizes) and outputs.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)


class InsufficientDataError(ValueError):
    """Too few usable observations for the requested test."""


@dataclass
class TestResult:
    name: str
    method: str
    statistic: float
    p_value: float
    n: int
    estimate: float | None = None
    conf_int: tuple[float, float] | None = None
    df: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    # Keep pytest from collecting this as a test class
    __test__ = False

    def significant(self, alpha: float = 0.05) -> bool:
        return bool(np.isfinite(self.p_value) and self.p_value < alpha)

    def to_dict(self) -> dict[str, Any]:
        return {
            "test": self.name,
            "method": self.method,
            "statistic": self.statistic,
            "p_value": self.p_value,
            "estimate": self.estimate,
            "ci_low": self.conf_int[0] if self.conf_int else None,
            "ci_high": self.conf_int[1] if self.conf_int else None,
            "df": self.df,
            "n": self.n,
        }


def _require(n: int, minimum: int, what: str) -> None:
    if n < minimum:
        raise InsufficientDataError(f"{what} needs at least {minimum} observations, got {n}")


def _clean(values: Any) -> np.ndarray:
    array = np.asarray(pd.to_numeric(pd.Series(values), errors="coerce"), dtype=float)
    return array[np.isfinite(array)]


def cor_test(
    x: Any,
    y: Any,
    method: str = "pearson",
    name: str | None = None,
    confidence: float = 0.95,
) -> TestResult:
    """Correlation test on complete pairs.

    Pearson results carry a Fisher-z confidence interval for r.
    """
    pairs = pd.DataFrame({"x": np.asarray(x, dtype=float), "y": np.asarray(y, dtype=float)})
    pairs = pairs.replace([np.inf, -np.inf], np.nan).dropna()
    n = len(pairs)
    _require(n, 3, "Correlation")

    if method == "pearson":
        r, p = stats.pearsonr(pairs["x"], pairs["y"])
        conf_int = None
        if n > 3 and abs(r) < 1:
            z = np.arctanh(r)
            half_width = stats.norm.ppf(0.5 + confidence / 2) / np.sqrt(n - 3)
            conf_int = (float(np.tanh(z - half_width)), float(np.tanh(z + half_width)))
        statistic = r * np.sqrt((n - 2) / (1 - r**2)) if abs(r) < 1 else np.inf
        return TestResult(
            name=name or "correlation",
            method="Pearson's product-moment correlation",
            statistic=float(statistic),
            p_value=float(p),
            n=n,
            estimate=float(r),
            conf_int=conf_int,
            df=n - 2,
        )

    if method == "spearman":
        rho, p = stats.spearmanr(pairs["x"], pairs["y"])
        return TestResult(
            name=name or "correlation",
            method="Spearman's rank correlation rho",
            statistic=float(rho),
            p_value=float(p),
            n=n,
            estimate=float(rho),
        )

    raise ValueError(f"Unknown correlation method '{method}'")


def t_test(
    a: Any, b: Any, equal_var: bool = False, name: str | None = None
) -> TestResult:
    """Two-sample t-test; Welch's by default. ``estimate`` is mean(a) - mean(b)."""
    a, b = _clean(a), _clean(b)
    _require(min(len(a), len(b)), 2, "Two-sample t-test")

    result = stats.ttest_ind(a, b, equal_var=equal_var)
    ci = result.confidence_interval()
    return TestResult(
        name=name or "t-test",
        method="Welch Two Sample t-test" if not equal_var else "Two Sample t-test",
        statistic=float(result.statistic),
        p_value=float(result.pvalue),
        n=len(a) + len(b),
        estimate=float(a.mean() - b.mean()),
        conf_int=(float(ci.low), float(ci.high)),
        df=float(result.df),
        extra={"mean_a": float(a.mean()), "mean_b": float(b.mean())},
    )


def paired_t_test(a: Any, b: Any, name: str | None = None) -> TestResult:
    pairs = pd.DataFrame({"a": np.asarray(a, dtype=float), "b": np.asarray(b, dtype=float)})
    pairs = pairs.replace([np.inf, -np.inf], np.nan).dropna()
    _require(len(pairs), 2, "Paired t-test")

    result = stats.ttest_rel(pairs["a"], pairs["b"])
    ci = result.confidence_interval()
    return TestResult(
        name=name or "paired t-test",
        method="Paired t-test",
        statistic=float(result.statistic),
        p_value=float(result.pvalue),
        n=len(pairs),
        estimate=float((pairs["a"] - pairs["b"]).mean()),
        conf_int=(float(ci.low), float(ci.high)),
        df=float(result.df),
    )


def chisq_uniform(counts: Any, name: str | None = None) -> TestResult:
    """Chi-square goodness of fit of ``counts`` against a uniform distribution."""
    observed = np.asarray(counts, dtype=float)
    _require(len(observed), 2, "Chi-square test")
    if observed.sum() == 0:
        raise InsufficientDataError("Chi-square test needs at least one observation")

    statistic, p = stats.chisquare(observed)
    return TestResult(
        name=name or "chi-square uniformity",
        method="Chi-squared test for given probabilities",
        statistic=float(statistic),
        p_value=float(p),
        n=int(observed.sum()),
        df=len(observed) - 1,
    )


def binom_test(k: int, n: int, p: float = 0.5, name: str | None = None) -> TestResult:
    _require(n, 1, "Binomial test")
    result = stats.binomtest(int(k), int(n), p=p)
    ci = result.proportion_ci()
    return TestResult(
        name=name or "binomial test",
        method="Exact binomial test",
        statistic=float(k),
        p_value=float(result.pvalue),
        n=int(n),
        estimate=float(result.statistic),
        conf_int=(float(ci.low), float(ci.high)),
        extra={"null_p": p},
    )


def anova_oneway(
    data: pd.DataFrame, value: str, group: str, name: str | None = None
) -> TestResult:
    """One-way ANOVA of ``value`` across ``group`` levels with eta squared."""
    frame = data[[value, group]].replace([np.inf, -np.inf], np.nan).dropna()
    samples = [g[value].to_numpy(dtype=float) for _, g in frame.groupby(group, observed=True)]
    samples = [s for s in samples if len(s) > 0]
    if len(samples) < 2:
        raise InsufficientDataError("ANOVA needs at least two non-empty groups")
    _require(len(frame), len(samples) + 1, "ANOVA")

    statistic, p = stats.f_oneway(*samples)
    grand_mean = frame[value].mean()
    ss_between = sum(len(s) * (s.mean() - grand_mean) ** 2 for s in samples)
    ss_total = ((frame[value] - grand_mean) ** 2).sum()
    return TestResult(
        name=name or f"ANOVA {value} by {group}",
        method="One-way ANOVA",
        statistic=float(statistic),
        p_value=float(p),
        n=len(frame),
        estimate=float(ss_between / ss_total) if ss_total > 0 else None,
        df=float(len(samples) - 1),
        extra={"eta_squared": float(ss_between / ss_total) if ss_total > 0 else None},
    )


def pairwise_t_tests(
    data: pd.DataFrame, value: str, group: str, adjust: str = "bonferroni"
) -> pd.DataFrame:
    """Welch t-tests between every pair of groups with adjusted p-values."""
    if adjust not in ("bonferroni", "none"):
        raise ValueError(f"Unknown p-value adjustment '{adjust}'")

    frame = data[[value, group]].dropna()
    levels = sorted(frame[group].unique(), key=str)
    rows = []
    for a, b in itertools.combinations(levels, 2):
        sample_a = frame.loc[frame[group] == a, value]
        sample_b = frame.loc[frame[group] == b, value]
        if len(sample_a) < 2 or len(sample_b) < 2:
            continue
        result = t_test(sample_a, sample_b)
        rows.append(
            {
                "group_a": a,
                "group_b": b,
                "mean_diff": result.estimate,
                "statistic": result.statistic,
                "p_value": result.p_value,
            }
        )

    table = pd.DataFrame(rows, columns=["group_a", "group_b", "mean_diff", "statistic", "p_value"])
    multiplier = len(table) if adjust == "bonferroni" else 1
    table["p_adjusted"] = (table["p_value"] * multiplier).clip(upper=1.0)
    return table


def ols(formula: str, data: pd.DataFrame, min_obs: int = 5):
    """Fit an OLS model with a patsy formula on the complete cases."""
    frame = data.replace([np.inf, -np.inf], np.nan)
    model = smf.ols(formula, data=frame)
    _require(int(model.nobs), min_obs, "OLS")
    return model.fit()


def ols_summary(result, name: str | None = None) -> pd.DataFrame:
    """Coefficient table of a fitted statsmodels regression."""
    ci = result.conf_int()
    table = pd.DataFrame(
        {
            "term": result.params.index,
            "estimate": result.params.to_numpy(),
            "std_error": result.bse.to_numpy(),
            "statistic": result.tvalues.to_numpy(),
            "p_value": result.pvalues.to_numpy(),
            "ci_low": ci[0].to_numpy(),
            "ci_high": ci[1].to_numpy(),
        }
    )
    if name:
        table.insert(0, "model", name)
    return table


def model_fit(result) -> dict[str, float]:
    return {
        "n": int(result.nobs),
        "r_squared": float(result.rsquared),
        "adj_r_squared": float(result.rsquared_adj),
        "f_statistic": float(result.fvalue) if result.fvalue is not None else np.nan,
        "f_p_value": float(result.f_pvalue) if result.f_pvalue is not None else np.nan,
        "aic": float(result.aic),
    }


def gini(values: Any) -> float:
    """Gini coefficient: 2 * sum(i * x_(i)) / (n * sum(x)) - (n + 1) / n."""
    x = np.sort(_clean(values))
    n = len(x)
    if n == 0 or x.sum() == 0:
        return np.nan
    index = np.arange(1, n + 1)
    return float(2 * np.sum(index * x) / (n * x.sum()) - (n + 1) / n)


def coefficient_of_variation(values: Any) -> float:
    x = _clean(values)
    if len(x) < 2 or x.mean() == 0:
        return np.nan
    return float(x.std(ddof=1) / x.mean())


def zscore(series: pd.Series) -> pd.Series:
    """Standardize with the sample sd, keeping NaNs; constant input gives zeros."""
    series = pd.to_numeric(series, errors="coerce")
    sd = series.std(ddof=1)
    if not np.isfinite(sd) or sd == 0:
        return pd.Series(np.where(series.notna(), 0.0, np.nan), index=series.index)
    return (series - series.mean()) / sd


def simpson_diversity(shares: pd.DataFrame) -> pd.Series:
    """1 - sum of squared shares per row; shares are proportions."""
    return 1 - (shares.fillna(0) ** 2).sum(axis=1)


def mahalanobis_distances(matrix: pd.DataFrame) -> pd.Series:
    """Mahalanobis distance of each row from the column means.

    Falls back to the Moore-Penrose pseudo-inverse when the covariance
    matrix is singular.
    """
    values = matrix.to_numpy(dtype=float)
    center = values.mean(axis=0)
    covariance = np.cov(values, rowvar=False)
    try:
        inverse = np.linalg.inv(covariance)
    except np.linalg.LinAlgError:
        logger.warning("Covariance matrix is singular; using the pseudo-inverse")
        inverse = np.linalg.pinv(covariance)

    centered = values - center
    squared = np.einsum("ij,jk,ik->i", centered, inverse, centered)
    return pd.Series(np.sqrt(np.clip(squared, 0, None)), index=matrix.index)


def dtw_distance(a: Any, b: Any) -> float:
    """Dynamic time warping distance with the symmetric1 step pattern.

    Local cost is the absolute difference; the cumulative cost is
    normalized by ``len(a) + len(b)``.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    n, m = len(a), len(b)
    if n == 0 or m == 0:
        raise InsufficientDataError("DTW needs two non-empty series")

    cost = np.abs(a[:, None] - b[None, :])
    acc = np.full((n + 1, m + 1), np.inf)
    acc[0, 0] = 0.0
    for i in range(1, n + 1):
        for j in range(1, m + 1):
            acc[i, j] = cost[i - 1, j - 1] + min(
                acc[i - 1, j], acc[i, j - 1], acc[i - 1, j - 1]
            )
    return float(acc[n, m] / (n + m))


def pca_linearity(coords: Any) -> float:
    """Percent of variance on the first principal component of scaled coordinates."""
    values = np.asarray(coords, dtype=float)
    values = values[np.isfinite(values).all(axis=1)]
    _require(len(values), 3, "PCA")

    sd = values.std(axis=0, ddof=1)
    sd[sd == 0] = 1.0
    scaled = (values - values.mean(axis=0)) / sd
    eigenvalues = np.linalg.eigvalsh(np.cov(scaled, rowvar=False))
    return float(eigenvalues.max() / eigenvalues.sum() * 100)


def nearest_neighbor_ratio(coords: Any) -> float:
    """Expected over observed mean nearest-neighbour distance.

    The expectation for ``n`` points scattered at random over their bounding
    box is ``0.5 * sqrt(area / n)``. Ratios above 1 mean the points clump,
    below 1 that they spread out. Repeated points are counted once.
    """
    values = np.asarray(coords, dtype=float)
    values = values[np.isfinite(values).all(axis=1)]
    values = np.unique(values, axis=0)
    _require(len(values), 5, "Nearest-neighbour ratio")

    distances, _ = cKDTree(values).query(values, k=2)
    observed = distances[:, 1].mean()
    width, height = values.max(axis=0) - values.min(axis=0)
    expected = 0.5 * np.sqrt(width * height / len(values))
    return float(expected / observed)


def ntile(series: pd.Series, n: int) -> pd.Series:
    """Bucket into ``n`` groups of near-equal size by rank (dplyr's ntile)."""
    ranks = series.rank(method="first")
    count = series.notna().sum()
    buckets = np.floor((ranks - 1) * n / count) + 1
    return buckets.astype("Int64")


def percent_rank(series: pd.Series) -> pd.Series:
    """(rank - 1) / (n - 1) with minimum ranks for ties."""
    ranks = series.rank(method="min")
    count = series.notna().sum()
    if count <= 1:
        return pd.Series(np.where(series.notna(), 0.0, np.nan), index=series.index)
    return (ranks - 1) / (count - 1)


def safe_test(func, *args, findings: list[str] | None = None, **kwargs):
    """Run a test, returning None (and noting why) when data are insufficient."""
    try:
        return func(*args, **kwargs)
    except InsufficientDataError as e:
        logger.info(f"Skipping {kwargs.get('name') or func.__name__}: {e}")
        if findings is not None:
            findings.append(f"Skipped {kwargs.get('name') or func.__name__}: {e}")
        return None
