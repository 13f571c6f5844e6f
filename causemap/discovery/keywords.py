"""
Metadata keyword aggregation for the fast labeling path.

Terms come from each project's topics and tags, normalized to lower case
with '-' and '_' read as spaces. A term counts once per project (document
frequency), so one heavily tagged project cannot dominate. Generic
technology terms (see causemap.shared.stopwords) and terms of two
characters or fewer are dropped. Ties keep first-seen order, so results
are deterministic for a given member order.
"""

import logging
import re
from collections import Counter
from typing import Iterable, List, Optional, Sequence, Tuple

from causemap.schemas.base import GeographicScope, LabelSource, Maturity
from causemap.schemas.causes import CauseLabel, CauseMetadata
from causemap.schemas.projects import ProjectRecord
from causemap.shared.stopwords import KEYWORD_STOP

logger = logging.getLogger(__name__)

MIN_TERM_LENGTH = 3
TOP_KEYWORDS = 5
TOP_LANGUAGES = 5
TOP_TOPICS = 5
TOP_TAGS = 5


def normalize_term(term: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[-_]", " ", term.strip().lower())).strip()


def _project_terms(project: ProjectRecord, stoplist: frozenset) -> List[str]:
    seen = []
    for raw in [*project.topics, *project.tags]:
        term = normalize_term(raw)
        if len(term) < MIN_TERM_LENGTH or term in stoplist or term in seen:
            continue
        seen.append(term)
    return seen


def term_frequencies(
    projects: Sequence[ProjectRecord],
    stoplist: frozenset = KEYWORD_STOP,
) -> List[Tuple[str, int]]:
    """(term, project count) pairs, most frequent first, ties in first-seen order."""
    counts: Counter = Counter()
    for project in projects:
        counts.update(_project_terms(project, stoplist))
    return counts.most_common()


def metadata_name(terms: Sequence[str], level: int) -> str:
    """Cause name from ranked terms.

    Level 0 uses the top term alone. Deeper levels combine the top two,
    or add "Technology" when only one term exists.
    """
    primary = terms[0].title()
    if level == 0:
        return primary
    if len(terms) > 1:
        return f"{primary} {terms[1].title()}"
    return f"{primary} Technology"


def label_from_metadata(
    projects: Sequence[ProjectRecord],
    level: int = 0,
    confidence: float = 0.6,
    top_n: int = TOP_KEYWORDS,
) -> Optional[CauseLabel]:
    """Fast-path label from topic/tag frequency. None when no usable term exists."""
    ranked = [term for term, _ in term_frequencies(projects)]
    if not ranked:
        return None
    keywords = ranked[:top_n]
    name = metadata_name(keywords, level)
    return CauseLabel(
        name=name,
        description=f"{name} initiatives and projects",
        keywords=keywords,
        confidence=confidence,
        source=LabelSource.METADATA,
    )


def _top(values: Iterable[str], n: int) -> List[str]:
    return [v for v, _ in Counter(values).most_common(n)]


def classify_maturity(avg_stars: float, growing_stars: float = 100.0, mature_stars: float = 1000.0) -> Maturity:
    if avg_stars >= mature_stars:
        return Maturity.MATURE
    if avg_stars >= growing_stars:
        return Maturity.GROWING
    return Maturity.EMERGING


def aggregate_metadata(
    projects: Sequence[ProjectRecord],
    growing_stars: float = 100.0,
    mature_stars: float = 1000.0,
) -> CauseMetadata:
    """Average popularity, dominant languages/topics/tags and maturity."""
    if not projects:
        return CauseMetadata()
    avg_stars = sum(p.stars for p in projects) / len(projects)
    return CauseMetadata(
        project_count=len(projects),
        avg_stars=round(avg_stars, 2),
        top_languages=_top((lang for p in projects for lang in p.languages), TOP_LANGUAGES),
        top_topics=_top((normalize_term(t) for p in projects for t in p.topics), TOP_TOPICS),
        top_tags=_top((normalize_term(t) for p in projects for t in p.tags), TOP_TAGS),
        geographic_scope=GeographicScope.GLOBAL,
        maturity=classify_maturity(avg_stars, growing_stars, mature_stars),
    )


def _jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    return len(set_a & set_b) / len(union) if union else 0.0


def project_similarity(a: ProjectRecord, b: ProjectRecord) -> float:
    """Metadata similarity in [0, 1]: 0.7 × topic Jaccard + 0.3 × language Jaccard."""
    topics = _jaccard((normalize_term(t) for t in a.topics), (normalize_term(t) for t in b.topics))
    languages = _jaccard((lang.lower() for lang in a.languages), (lang.lower() for lang in b.languages))
    return topics * 0.7 + languages * 0.3
