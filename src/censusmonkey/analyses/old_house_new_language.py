"""Old House, New Language: housing age and linguistic diversity in LA.

Relates the share of pre-1980 housing in Los Angeles County tracts to a
Simpson diversity index over five language groups spoken at home.
"""

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.geography import LOS_ANGELES_COUNTY
from censusmonkey.stats import anova_oneway, cor_test, safe_test, simpson_diversity, t_test

HOUSING_VARIABLES = [f"B25034_{i:03d}" for i in range(1, 12)]
OLD_CELLS = ["B25034_007", "B25034_008", "B25034_009", "B25034_010", "B25034_011"]
VERY_OLD_CELLS = ["B25034_009", "B25034_010", "B25034_011"]
NEW_CELLS = ["B25034_002", "B25034_003", "B25034_004"]

LANGUAGE_GROUPS = {
    "english": ["B16001_002"],
    "spanish": ["B16001_003"],
    "asian": ["B16001_018", "B16001_021", "B16001_024", "B16001_027", "B16001_030"],
    "european": ["B16001_006", "B16001_009", "B16001_012", "B16001_015"],
    "other": ["B16001_033", "B16001_036"],
}
LANGUAGE_VARIABLES = ["B16001_001", *(v for cells in LANGUAGE_GROUPS.values() for v in cells)]

AGE_CATEGORIES = [
    "Predominantly Old (70%+)",
    "Mostly Old (50-70%)",
    "Mixed Age (30-50%)",
    "Mostly New (15-30%)",
    "Predominantly New (<15%)",
]
DIVERSITY_CATEGORIES = [
    "Very High Diversity",
    "High Diversity",
    "Moderate Diversity",
    "Low Diversity",
    "Minimal Diversity",
]
MIN_UNITS = 100
MIN_SPEAKERS = 200
GROUP_SHARE = 0.05
MIN_GROUP_TRACTS = 5


def _sum(raw: pd.DataFrame, cells: list[str]) -> pd.Series:
    return raw[[f"{c}E" for c in cells]].sum(axis=1)


def housing_age(raw: pd.DataFrame) -> pd.DataFrame:
    units = raw["B25034_001E"]
    df = pd.DataFrame(
        {
            "GEOID": raw["GEOID"],
            "NAME": raw["NAME"],
            "total_units": units,
            "old_housing_pct": _sum(raw, OLD_CELLS) / units.where(units > 0) * 100,
            "very_old_housing_pct": _sum(raw, VERY_OLD_CELLS) / units.where(units > 0) * 100,
            "new_housing_pct": _sum(raw, NEW_CELLS) / units.where(units > 0) * 100,
        }
    )
    old = df["old_housing_pct"]
    df["housing_age_category"] = np.select(
        [old >= 70, old >= 50, old >= 30, old >= 15], AGE_CATEGORIES[:4], default=AGE_CATEGORIES[4]
    )
    return df[df["old_housing_pct"].notna() & (df["total_units"] >= MIN_UNITS)]


def language_diversity(raw: pd.DataFrame) -> pd.DataFrame:
    """Group shares, Simpson diversity and the count of groups above 5%."""
    speakers = raw["B16001_001E"].where(raw["B16001_001E"] > 0)
    shares = pd.DataFrame(
        {f"{group}_share": _sum(raw, cells) / speakers for group, cells in LANGUAGE_GROUPS.items()}
    )
    df = pd.concat([raw[["GEOID"]], shares], axis=1)
    df["total_pop_5plus"] = raw["B16001_001E"]
    df["non_english_pct"] = (1 - shares["english_share"]) * 100
    df["diversity_index"] = simpson_diversity(shares).where(speakers.notna())
    df["lang_groups_count"] = (
        shares.drop(columns="english_share").gt(GROUP_SHARE).sum(axis=1)
    )
    diversity = df["diversity_index"]
    df["diversity_category"] = np.select(
        [diversity >= 0.6, diversity >= 0.4, diversity >= 0.25, diversity >= 0.1],
        DIVERSITY_CATEGORIES[:4],
        default=DIVERSITY_CATEGORIES[4],
    )
    return df[df["diversity_index"].notna() & (df["total_pop_5plus"] >= MIN_SPEAKERS)]


class OldHouseNewLanguage(Analysis):
    name = "old-house-new-language"
    title = "Old House, New Language"
    category = "whimsical"
    description = (
        "Tests whether Los Angeles County tracts with older housing stock host a "
        "more linguistically diverse population."
    )
    keywords = ["housing age", "language", "diversity", "immigration", "los angeles", "tracts"]

    def __init__(self, year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.year = year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        state, county = LOS_ANGELES_COUNTY
        housing, language = await client.load_all(
            [
                lambda: client.get_acs(
                    "tract", HOUSING_VARIABLES, year=self.year, state=state, county=county
                ),
                lambda: client.get_acs(
                    "tract", LANGUAGE_VARIABLES, year=self.year, state=state, county=county
                ),
            ]
        )
        return {"housing": housing, "language": language}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        df = housing_age(data["housing"]).merge(
            language_diversity(data["language"]), on="GEOID", how="inner"
        )
        result.data = df

        result.summary = {
            "tracts": len(df),
            "mean_old_housing_pct": float(df["old_housing_pct"].mean()),
            "mean_diversity_index": float(df["diversity_index"].mean()),
            "mean_non_english_pct": float(df["non_english_pct"].mean()),
        }
        result.tables["housing_age_categories"] = (
            df.groupby("housing_age_category")
            .agg(
                tracts=("GEOID", "count"),
                mean_diversity_index=("diversity_index", "mean"),
                mean_non_english_pct=("non_english_pct", "mean"),
                mean_lang_groups=("lang_groups_count", "mean"),
            )
            .reindex([c for c in AGE_CATEGORIES if c in set(df["housing_age_category"])])
            .reset_index()
        )
        result.tables["diversity_categories"] = (
            df["diversity_category"]
            .value_counts()
            .reindex(DIVERSITY_CATEGORIES, fill_value=0)
            .rename_axis("diversity_category")
            .reset_index(name="tracts")
        )
        result.tables["language_correlations"] = (
            pd.DataFrame(
                {
                    "language_group": [g.title() for g in LANGUAGE_GROUPS if g != "english"],
                    "correlation": [
                        df["old_housing_pct"].corr(df[f"{g}_share"])
                        for g in LANGUAGE_GROUPS
                        if g != "english"
                    ],
                }
            )
            .sort_values("correlation", key=abs, ascending=False)
            .reset_index(drop=True)
        )

        main = None
        for column, label in (
            ("old_housing_pct", "old housing"),
            ("very_old_housing_pct", "very old housing"),
            ("new_housing_pct", "new housing"),
        ):
            test = result.add_test(
                safe_test(
                    cor_test,
                    df[column],
                    df["diversity_index"],
                    name=f"{label} vs diversity",
                    findings=result.findings,
                )
            )
            main = main or test
        result.add_test(
            safe_test(
                cor_test,
                df["old_housing_pct"],
                df["non_english_pct"],
                name="old housing vs non-English speakers",
            )
        )

        old = df[df["housing_age_category"] == AGE_CATEGORIES[0]]
        new = df[df["housing_age_category"] == AGE_CATEGORIES[-1]]
        if len(old) >= MIN_GROUP_TRACTS and len(new) >= MIN_GROUP_TRACTS:
            result.add_test(
                t_test(
                    old["diversity_index"],
                    new["diversity_index"],
                    name="diversity, predominantly old vs predominantly new",
                )
            )
            result.add_test(
                t_test(
                    old["non_english_pct"],
                    new["non_english_pct"],
                    name="non-English, predominantly old vs predominantly new",
                )
            )
        else:
            result.findings.append(
                f"Too few extreme tracts for the old-vs-new comparison "
                f"({len(old)} old, {len(new)} new)"
            )

        result.add_test(
            safe_test(
                anova_oneway,
                df,
                "diversity_index",
                "housing_age_category",
                name="diversity by housing age category",
                findings=result.findings,
            )
        )

        if main is not None:
            stats = f"r = {main.estimate:.3f}, p = {main.p_value:.3g}"
            if not main.significant(self.alpha):
                headline = f"No significant association between housing age and diversity ({stats})"
            else:
                strength = (
                    "strong" if abs(main.estimate) >= 0.3
                    else "moderate" if abs(main.estimate) >= 0.15
                    else "weak"
                )
                direction = "positive" if main.estimate > 0 else "negative"
                headline = (
                    f"Housing age and linguistic diversity show a {strength} {direction} "
                    f"association ({stats})"
                )
            result.findings.insert(0, headline)
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        return {
            "old_housing_vs_diversity": plots.scatter_with_trend(
                df,
                "old_housing_pct",
                "diversity_index",
                "Housing Stock Age vs Linguistic Diversity",
                xlabel="Housing built before 1980 (%)",
                ylabel="Linguistic diversity index",
            ),
            "old_housing_distribution": plots.histogram(
                df,
                "old_housing_pct",
                "Distribution of Old Housing Stock",
                xlabel="Housing built before 1980 (%)",
                vline=float(df["old_housing_pct"].mean()),
            ),
            "diversity_by_housing_age": plots.boxplot(
                df,
                "housing_age_category",
                "diversity_index",
                "Linguistic Diversity by Housing Age",
                ylabel="Linguistic diversity index",
                order=[c for c in AGE_CATEGORIES if c in set(df["housing_age_category"])],
            ),
        }
