"""The Toponymic Travel Test: do hard-to-say county names deter movers?

Scores each county name on length, syllables and orthographic quirks and
regresses the rate of in-migration from other states on those measures.
"""

import re

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from censusmonkey import plots
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.client import CensusClient
from censusmonkey.stats import cor_test, safe_test

VARIABLES = {
    "total_pop": "B01003_001",
    "movers_from_other_state": "B07001_093",
    "median_income": "B19013_001",
}

NAME_SUFFIXES = re.compile(r" (County|Parish|Borough|Census Area|city|Municipality)$")
VOWEL_RUNS = re.compile(r"[aeiouy]+")
CONSONANT_CLUSTERS = re.compile(r"[bcdfghjklmnpqrstvwxyz]{2,}")
SPECIAL_CHARS = re.compile(r"[^A-Za-z\s'-]")
SAINT = re.compile(r"^(St\.|Saint)")
DIRECTION = re.compile(r"^(North|South|East|West)")
DOUBLE_LETTERS = re.compile(r"(.)\1")

NAME_MEASURES = {
    "char_count": "characters",
    "word_count": "words",
    "syllable_count": "syllables",
    "consonant_clusters": "consonant clusters",
    "phonetic_complexity": "phonetic complexity",
    "unique_chars": "unique characters",
}
LENGTH_CATEGORIES = ["Very Short", "Short", "Medium", "Long", "Very Long"]

# model name -> (formula, key term)
MODELS = {
    "length": ("inmigration_rate ~ char_count", "char_count"),
    "syllables": ("inmigration_rate ~ syllable_count", "syllable_count"),
    "length + population": ("inmigration_rate ~ char_count + log_pop", "char_count"),
    "length + population + income": (
        "inmigration_rate ~ char_count + log_pop + log_income",
        "char_count",
    ),
    "quadratic length": (
        "inmigration_rate ~ char_count + I(char_count ** 2) + log_pop",
        "char_count",
    ),
    "full": (
        "inmigration_rate ~ char_count + syllable_count + consonant_clusters"
        " + has_apostrophe + has_hyphen + ends_in_o + has_direction + log_pop + log_income",
        "char_count",
    ),
}


def clean_county_name(name: str) -> str:
    """'St. Mary Parish, Louisiana' -> 'St. Mary'."""
    return NAME_SUFFIXES.sub("", str(name).split(",")[0].strip())


def name_features(name: str) -> dict[str, object]:
    clean = clean_county_name(name)
    lower = clean.lower()
    return {
        "county_name_clean": clean,
        "char_count": len(clean.replace(" ", "")),
        "word_count": len(clean.split()),
        "syllable_count": max(1, len(VOWEL_RUNS.findall(lower))),
        "consonant_clusters": len(CONSONANT_CLUSTERS.findall(lower)),
        "has_apostrophe": "'" in clean,
        "has_hyphen": "-" in clean,
        "has_special_char": bool(SPECIAL_CHARS.search(clean)),
        "ends_in_o": lower.endswith("o"),
        "has_saint": bool(SAINT.match(clean)),
        "has_direction": bool(DIRECTION.match(clean)),
        "double_letters": len(DOUBLE_LETTERS.findall(clean)),
        "unique_chars": len(set(lower)),
    }


def name_origin(features: pd.DataFrame) -> pd.Series:
    return pd.Series(
        np.select(
            [features["has_saint"], features["ends_in_o"], features["has_direction"]],
            ["Religious", "Spanish Origin", "Directional"],
            default="Other",
        ),
        index=features.index,
    )


def length_category(char_count: pd.Series) -> pd.Series:
    return pd.Series(
        np.select(
            [char_count <= 5, char_count <= 8, char_count <= 12, char_count <= 16],
            LENGTH_CATEGORIES[:4],
            default=LENGTH_CATEGORIES[4],
        ),
        index=char_count.index,
    )


class ToponymicTravelTest(Analysis):
    name = "toponymic-travel-test"
    title = "The Toponymic Travel Test"
    category = "whimsical"
    description = (
        "Tests whether counties with long or hard-to-pronounce names attract fewer "
        "movers from other states."
    )
    keywords = ["names", "toponyms", "migration", "pronunciation", "county", "linguistics"]

    def __init__(self, states: list[str] | None = None, year: int = 2022, **kwargs) -> None:
        super().__init__(**kwargs)
        self.states = states or ["TX"]
        self.year = year

    async def fetch(self, client: CensusClient) -> dict[str, pd.DataFrame]:
        counties = await client.get_acs("county", VARIABLES, year=self.year, state=self.states)
        return {"counties": counties}

    def compute(self, data: dict[str, pd.DataFrame]) -> AnalysisResult:
        result = self.new_result()
        raw = data["counties"]

        features = pd.DataFrame([name_features(n) for n in raw["NAME"]], index=raw.index)
        df = pd.concat([raw[["GEOID", "NAME"]], features], axis=1)
        df["total_pop"] = raw["total_popE"]
        df["median_income"] = raw["median_incomeE"]
        df["inmigration_rate"] = raw["movers_from_other_stateE"] / raw["total_popE"] * 1000
        df["log_pop"] = np.log(df["total_pop"] + 1)
        df["log_income"] = np.log(df["median_income"])
        df["phonetic_complexity"] = (
            df["syllable_count"] + df["consonant_clusters"] + df["double_letters"]
        )
        df["name_origin"] = name_origin(df)
        df["name_length_category"] = length_category(df["char_count"])
        df = df[df["inmigration_rate"].notna() & (df["total_pop"] > 1000)].reset_index(drop=True)
        for flag in ("has_apostrophe", "has_hyphen", "ends_in_o", "has_direction"):
            df[flag] = df[flag].astype(int)
        result.data = df

        result.summary = {
            "counties": len(df),
            "mean_name_length": float(df["char_count"].mean()),
            "mean_inmigration_per_1000": float(df["inmigration_rate"].mean()),
            "longest_name": df.loc[df["char_count"].idxmax(), "county_name_clean"] if len(df) else None,
        }
        result.tables["longest_names"] = df.nlargest(10, "char_count")[
            ["county_name_clean", "char_count", "syllable_count", "phonetic_complexity", "inmigration_rate"]
        ].reset_index(drop=True)
        result.tables["length_categories"] = (
            df.groupby("name_length_category")
            .agg(
                counties=("GEOID", "count"),
                mean_migration=("inmigration_rate", "mean"),
                sd_migration=("inmigration_rate", "std"),
                mean_income=("median_income", "mean"),
            )
            .reindex([c for c in LENGTH_CATEGORIES if c in set(df["name_length_category"])])
            .reset_index()
        )
        result.tables["name_origins"] = (
            df.groupby("name_origin")
            .agg(counties=("GEOID", "count"), mean_migration=("inmigration_rate", "mean"))
            .reset_index()
        )

        for column, label in NAME_MEASURES.items():
            result.add_test(
                safe_test(
                    cor_test,
                    df[column],
                    df["inmigration_rate"],
                    name=f"name {label} vs in-migration",
                    findings=result.findings,
                )
            )

        rows = []
        for model_name, (formula, term) in MODELS.items():
            fitted = result.fit_model(model_name, formula, df)
            if fitted is None:
                continue
            rows.append(
                {
                    "model": model_name,
                    "term": term,
                    "coefficient": float(fitted.params[term]),
                    "p_value": float(fitted.pvalues[term]),
                    "r_squared": float(fitted.rsquared),
                }
            )
        key_terms = pd.DataFrame(rows, columns=["model", "term", "coefficient", "p_value", "r_squared"])
        result.tables["key_terms"] = key_terms

        controlled = key_terms[key_terms["model"] == "length + population"]
        if not controlled.empty:
            row = controlled.iloc[0]
            effect = row["coefficient"] * df["char_count"].std()
            effect_pct = abs(effect) / df["inmigration_rate"].mean() * 100
            result.summary["effect_per_sd_length_pct"] = float(effect_pct)
            deters = row["coefficient"] < 0 and row["p_value"] < self.alpha
            result.findings.insert(
                0,
                f"Longer names {'do' if deters else 'do not'} deter movers: one standard "
                f"deviation of name length shifts in-migration by {effect:+.2f} per 1,000 "
                f"({effect_pct:.1f}% of the mean, p = {row['p_value']:.3g})",
            )
        return result

    def figures(self, result: AnalysisResult) -> dict[str, Figure]:
        df = result.data
        if df is None or df.empty:
            return {}
        return {
            "name_length_vs_migration": plots.scatter_with_trend(
                df,
                "char_count",
                "inmigration_rate",
                "County Name Length vs In-Migration",
                xlabel="Characters in county name",
                ylabel="Movers from other states per 1,000",
            ),
            "migration_by_length": plots.boxplot(
                df,
                "name_length_category",
                "inmigration_rate",
                "In-Migration by Name Length",
                ylabel="Movers from other states per 1,000",
                order=[c for c in LENGTH_CATEGORIES if c in set(df["name_length_category"])],
            ),
        }
