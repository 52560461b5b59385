"""Search and discovery over the analysis corpus."""

from dataclasses import dataclass, field

from censusmonkey.analyses import Analysis

# Stopwords for keyword extraction
STOPWORDS = {
    "the",
    "a",
    "an",
    "and",
    "or",
    "but",
    "in",
    "on",
    "at",
    "to",
    "for",
    "of",
    "is",
    "it",
    "this",
    "that",
    "with",
    "whether",
    "using",
}


@dataclass
class SearchIndex:
    """Lookup tables from titles, categories and keywords to analysis slugs."""

    analyses: dict[str, type[Analysis]] = field(default_factory=dict)
    normalized_titles: dict[str, str] = field(default_factory=dict)
    category_index: dict[str, list[str]] = field(default_factory=dict)
    keyword_index: dict[str, list[str]] = field(default_factory=dict)


def _extract_keywords(text: str | None) -> set[str]:
    """Extract keywords from text by filtering stopwords and short words."""
    if not text:
        return set()

    keywords: set[str] = set()
    for word in str(text).lower().replace("-", " ").split():
        word = word.strip(".,;:!?()[]{}\"'")
        if len(word) >= 3 and word not in STOPWORDS:
            keywords.add(word)
    return keywords


def build_search_index(analyses: list[type[Analysis]]) -> SearchIndex:
    """Index analyses by title, slug, category, keywords and description words."""
    index = SearchIndex()

    for analysis in analyses:
        name = analysis.name
        index.analyses[name] = analysis
        index.normalized_titles[analysis.title.lower()] = name
        index.normalized_titles[name] = name
        index.category_index.setdefault(analysis.category, []).append(name)

        keywords = _extract_keywords(analysis.title) | _extract_keywords(analysis.description)
        keywords |= _extract_keywords(name)
        for keyword in analysis.keywords:
            keywords |= _extract_keywords(keyword)
            keywords.add(keyword.lower())
        for keyword in keywords:
            index.keyword_index.setdefault(keyword, [])
            if name not in index.keyword_index[keyword]:
                index.keyword_index[keyword].append(name)

    return index


def _levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate Levenshtein distance between two strings."""
    if len(s1) < len(s2):
        return _levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = range(len(s2) + 1)
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def _fuzzy_ratio(s1: str, s2: str) -> float:
    """Calculate fuzzy match ratio between two strings (0-100)."""
    if not s1 or not s2:
        return 0.0

    distance = _levenshtein_distance(s1, s2)
    max_len = max(len(s1), len(s2))
    return (1 - distance / max_len) * 100


def search(
    index: SearchIndex,
    query: str,
    category: str | None = None,
    fuzzy: bool = False,
    limit: int | None = None,
) -> list[str]:
    """Search for analyses by query.

    Args:
        index: SearchIndex to search
        query: Search query string
        category: Optional category filter
        fuzzy: Whether to use fuzzy title matching (default: False)
        limit: Maximum number of results to return

    Returns:
        Analysis slugs sorted by relevance, then name
    """
    query_lower = str(query).lower().strip()
    results: dict[str, int] = {}

    for normalized_title, name in index.normalized_titles.items():
        if fuzzy:
            ratio = _fuzzy_ratio(query_lower, normalized_title)
            if ratio >= 70:
                results[name] = max(results.get(name, 0), int(ratio * 10))
        elif query_lower == normalized_title:
            results[name] = 1000
        elif query_lower in normalized_title:
            results[name] = max(results.get(name, 0), 500)

    for keyword in _extract_keywords(query) | {query_lower}:
        for name in index.keyword_index.get(keyword, []):
            results[name] = results.get(name, 0) + 100

    if category:
        allowed = set(index.category_index.get(category, []))
        results = {name: score for name, score in results.items() if name in allowed}

    ranked = sorted(results, key=lambda n: (-results[n], n))
    if limit is not None:
        ranked = ranked[:limit]
    return ranked


def list_categories(index: SearchIndex) -> list[str]:
    return sorted(index.category_index.keys())


def get_by_category(index: SearchIndex, category: str) -> list[str]:
    """All analysis slugs in a category, sorted."""
    return sorted(index.category_index.get(category, []))
