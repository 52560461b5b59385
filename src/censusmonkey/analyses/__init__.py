from censusmonkey.analyses.bachelor_pad import BachelorPadIndex
from censusmonkey.analyses.base import Analysis, AnalysisResult
from censusmonkey.analyses.basement_dweller import BasementDwellerIndex
from censusmonkey.analyses.carless_corridors import CarlessCorridors
from censusmonkey.analyses.commuting_dead import CommutingDead
from censusmonkey.analyses.demographic_deja_vu import DemographicDejaVu
from censusmonkey.analyses.goldilocks_zone import GoldilocksZone
from censusmonkey.analyses.great_decoupling import GreatDecoupling
from censusmonkey.analyses.great_dispersion import GreatDispersion
from censusmonkey.analyses.heat_refuge import HeatRefugeHighways
from censusmonkey.analyses.loneliness_gradient import LonelinessGradient
from censusmonkey.analyses.migration_symmetry import MigrationSymmetry
from censusmonkey.analyses.old_house_new_language import OldHouseNewLanguage
from censusmonkey.analyses.round_number_magnetism import RoundNumberMagnetism
from censusmonkey.analyses.solo_boomers import SoloBoomers
from censusmonkey.analyses.toponymic_travel import ToponymicTravelTest

ANALYSES: dict[str, type[Analysis]] = {
    cls.name: cls
    for cls in (
        RoundNumberMagnetism,
        GreatDispersion,
        MigrationSymmetry,
        SoloBoomers,
        GreatDecoupling,
        BachelorPadIndex,
        BasementDwellerIndex,
        CarlessCorridors,
        CommutingDead,
        GoldilocksZone,
        DemographicDejaVu,
        HeatRefugeHighways,
        LonelinessGradient,
        OldHouseNewLanguage,
        ToponymicTravelTest,
    )
}

CATEGORIES = ("serious", "whimsical", "exploratory")


def get_analysis(name: str, **options) -> Analysis:
    """Instantiate an analysis by slug.

    Raises:
        ValueError: If no analysis has that name
    """
    cls = ANALYSES.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown analysis '{name}'. Available: {', '.join(sorted(ANALYSES))}"
        )
    return cls(**options)


def list_analyses(category: str | None = None) -> list[type[Analysis]]:
    if category is not None and category not in CATEGORIES:
        raise ValueError(f"Unknown category '{category}'. Use one of: {', '.join(CATEGORIES)}")
    return [cls for cls in ANALYSES.values() if category is None or cls.category == category]


__all__ = [
    "ANALYSES",
    "CATEGORIES",
    "Analysis",
    "AnalysisResult",
    "get_analysis",
    "list_analyses",
]
