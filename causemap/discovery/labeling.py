"""
Cause labeling — turns clusters into named, described causes.

PATHS (in order of preference):
  1. LLM (slow, higher quality): top-level clusters, and subclusters larger
     than LLM_LABEL_MIN_SIZE. A representative sample of members is listed
     in a structured prompt; the model answers with JSON
     {name, description, keywords, confidence}.
  2. Metadata (fast): topic/tag frequency → title-cased name. Used when
     the LLM path is skipped, errors, or returns unusable JSON.
  3. Fallback: "Cause Area N" with low confidence, when members carry no
     usable topics or tags either.

Every cluster gets a non-empty name; labeling never fails a discovery run.

CONCURRENCY: at most LLM_LABEL_CONCURRENCY clusters are labeled at once,
to bound load on the language-model service. Results are matched back to
clusters by id.
"""

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from causemap.config import Settings, get_settings
from causemap.errors import MalformedResponseError, ServiceError
from causemap.schemas.base import LabelSource
from causemap.schemas.causes import CauseLabel, Cluster, DiscoveredCause
from causemap.schemas.projects import ProjectRecord
from causemap.shared.palette import palette_color, shade
from causemap.shared.stopwords import LLM_BOILERPLATE
from causemap.discovery.keywords import aggregate_metadata, label_from_metadata, normalize_term

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 80
MAX_KEYWORDS = 8
DESCRIPTION_CHARS = 150
TOPICS_PER_PROJECT = 4

SYSTEM_PROMPT = (
    "You are an analyst who maps the open-source ecosystem onto social-impact causes "
    "(health, climate, education, civic technology, humanitarian response, financial "
    "inclusion and similar). Given a sample of related projects, name the cause they "
    "serve, not the technology they use. Always respond with valid JSON."
)

LABEL_TEMPLATE = """Analyze these {count} open-source projects, a representative sample of a cluster of {total} related projects, and identify the social-impact cause they share.
{parent_line}
PROJECTS:
{projects}

COMMON PATTERNS:
- Languages: {languages}
- Topics: {topics}
- Average stars: {avg_stars}

Respond with JSON:
{{
    "name": "Concise cause name (2-5 words, e.g. 'Climate Data Transparency')",
    "description": "One or two sentences describing the cause these projects advance",
    "keywords": ["3-6 lowercase keywords"],
    "confidence": <number between 0.0 and 1.0>
}}

RULES:
1. Name the cause or impact area, not the programming language or framework.
2. Base the answer only on the projects listed above.
3. confidence is your certainty (0.0-1.0) that the projects share one coherent cause."""


# ══════════════════════════════════════════════════════════════════════════════
# REPRESENTATIVE SAMPLING
# ══════════════════════════════════════════════════════════════════════════════

def select_representatives(
    projects: Sequence[ProjectRecord],
    sample_size: int = 8,
    popular_share: float = 0.6,
) -> List[ProjectRecord]:
    """
    Pick the projects shown to the language model.

    The first ``floor(sample_size × popular_share)`` are the most-starred
    members; the remainder are chosen greedily for topics not yet covered
    (ties go to the more-starred project), so niche sub-themes are visible.
    """
    by_stars = sorted(projects, key=lambda p: p.stars, reverse=True)
    if len(by_stars) <= sample_size:
        return by_stars

    n_popular = math.floor(sample_size * popular_share)
    selected = by_stars[:n_popular]
    covered = {normalize_term(t) for p in selected for t in p.topics}
    pool = by_stars[n_popular:]

    while len(selected) < sample_size and pool:
        best = max(pool, key=lambda p: len({normalize_term(t) for t in p.topics} - covered))
        pool.remove(best)
        selected.append(best)
        covered.update(normalize_term(t) for t in best.topics)

    logger.debug(
        f"Label sampling: {len(projects)} → {len(selected)} "
        f"({n_popular} popular, {len(selected) - n_popular} diverse, {len(covered)} topics)"
    )
    return selected


def build_label_prompt(
    sample: Sequence[ProjectRecord],
    total: int,
    parent_name: Optional[str] = None,
) -> str:
    lines = []
    for i, p in enumerate(sample, 1):
        lines.append(f"{i}. {p.name} ({p.stars} stars)")
        lines.append(f"   Description: {(p.description or 'No description')[:DESCRIPTION_CHARS]}")
        if p.topics:
            lines.append(f"   Topics: {', '.join(p.topics[:TOPICS_PER_PROJECT])}")

    patterns = aggregate_metadata(sample)
    parent_line = (
        f"\nThese projects form a sub-group of the broader cause '{parent_name}'. "
        f"Name the narrower focus that sets them apart.\n"
        if parent_name else ""
    )
    return LABEL_TEMPLATE.format(
        count=len(sample),
        total=total,
        parent_line=parent_line,
        projects="\n".join(lines),
        languages=", ".join(patterns.top_languages) or "various",
        topics=", ".join(patterns.top_topics) or "various",
        avg_stars=round(patterns.avg_stars),
    )


# ══════════════════════════════════════════════════════════════════════════════
# LLM OUTPUT VALIDATION
# ══════════════════════════════════════════════════════════════════════════════

def validate_llm_label(data: Dict[str, Any], default_confidence: float = 0.8) -> CauseLabel:
    """
    Coerce a parsed model answer into a CauseLabel.

    Raises MalformedResponseError when the name is missing, too long, or
    the answer is assistant boilerplate rather than a label.
    """
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise MalformedResponseError("response has no 'name'")
    name = name.strip().strip('"').strip()
    if len(name) > MAX_NAME_LENGTH:
        raise MalformedResponseError(f"name too long ({len(name)} chars)")

    description = data.get("description")
    description = description.strip() if isinstance(description, str) else ""

    text = f"{name} {description}".lower()
    if any(bp in text for bp in LLM_BOILERPLATE):
        raise MalformedResponseError("response is assistant boilerplate")

    raw_keywords = data.get("keywords", [])
    if isinstance(raw_keywords, str):
        raw_keywords = raw_keywords.split(",")
    if not isinstance(raw_keywords, list):
        raw_keywords = []
    keywords: List[str] = []
    for kw in raw_keywords:
        term = str(kw).strip().lower()
        if term and term not in keywords:
            keywords.append(term)

    try:
        confidence = float(data.get("confidence", default_confidence))
    except (TypeError, ValueError):
        confidence = default_confidence
    if math.isnan(confidence):
        confidence = default_confidence

    return CauseLabel(
        name=name,
        description=description or f"{name} initiatives and projects",
        keywords=keywords[:MAX_KEYWORDS],
        confidence=min(1.0, max(0.0, confidence)),
        source=LabelSource.LLM,
    )


# ══════════════════════════════════════════════════════════════════════════════
# LABELER
# ══════════════════════════════════════════════════════════════════════════════

class CauseLabeler:
    """
    Labels clusters via LLM, metadata, or fallback.

    ``llm`` is optional: without it every cluster takes the metadata path.
    """

    def __init__(
        self,
        llm: Optional[Any] = None,
        settings: Optional[Settings] = None,
        concurrency: Optional[int] = None,
        llm_min_size: Optional[int] = None,
        sample_size: Optional[int] = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.concurrency = max(1, concurrency or self.settings.llm_label_concurrency)
        self.llm_min_size = self.settings.llm_label_min_size if llm_min_size is None else llm_min_size
        self.sample_size = sample_size or self.settings.label_sample_size

    def should_use_llm(self, size: int, level: int) -> bool:
        return self.llm is not None and (level == 0 or size > self.llm_min_size)

    def fallback_label(self, number: str) -> CauseLabel:
        return CauseLabel(
            name=f"Cause Area {number}",
            description="Projects grouped by semantic similarity",
            keywords=[],
            confidence=self.settings.fallback_label_confidence,
            source=LabelSource.FALLBACK,
        )

    async def _label_with_llm(
        self,
        projects: Sequence[ProjectRecord],
        parent_name: Optional[str],
    ) -> CauseLabel:
        sample = select_representatives(
            projects, self.sample_size, self.settings.label_sample_popular_share,
        )
        prompt = build_label_prompt(sample, len(projects), parent_name)
        data = await self.llm.generate_json(prompt, system_prompt=SYSTEM_PROMPT)
        return validate_llm_label(data, self.settings.llm_default_confidence)

    async def label(
        self,
        projects: Sequence[ProjectRecord],
        level: int = 0,
        number: str = "1",
        parent_name: Optional[str] = None,
    ) -> CauseLabel:
        """Label one cluster. Never raises for service or parsing failures."""
        if self.should_use_llm(len(projects), level):
            try:
                return await self._label_with_llm(projects, parent_name)
            except MalformedResponseError as e:
                logger.warning(f"Cause {number}: unusable LLM label ({e}); using metadata")
            except ServiceError as e:
                logger.warning(f"Cause {number}: LLM unavailable ({type(e).__name__}: {e}); using metadata")

        label = label_from_metadata(projects, level, self.settings.metadata_label_confidence)
        if label is not None:
            return label
        logger.info(f"Cause {number}: no usable topics or tags; generic label")
        return self.fallback_label(number)

    def build_cause(
        self,
        cluster: Cluster,
        label: CauseLabel,
        projects: Sequence[ProjectRecord],
        color: str,
    ) -> DiscoveredCause:
        return DiscoveredCause(
            id=cluster.id,
            name=label.name,
            description=label.description,
            keywords=label.keywords,
            color=color,
            level=cluster.level,
            parent_id=cluster.parent_id,
            project_ids=list(cluster.member_ids),
            centroid=list(cluster.centroid),
            confidence=label.confidence,
            label_source=label.source,
            metadata=aggregate_metadata(
                projects,
                self.settings.maturity_growing_stars,
                self.settings.maturity_mature_stars,
            ),
        )

    async def label_clusters(
        self,
        clusters: Sequence[Cluster],
        projects_by_id: Dict[str, ProjectRecord],
        parent: Optional[DiscoveredCause] = None,
        start_index: int = 0,
    ) -> List[DiscoveredCause]:
        """
        Label a set of sibling clusters with bounded concurrency.

        Top-level clusters take palette colors starting at ``start_index``.
        Subclusters of ``parent`` take shades of the parent's color, and
        ``start_index`` is then the parent's own index (for fallback names).
        Returned causes follow the order of ``clusters``.
        """
        if not clusters:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        def _number(i: int) -> str:
            if parent is None:
                return str(start_index + i + 1)
            return f"{start_index + 1}.{i + 1}"

        async def _one(i: int, cluster: Cluster) -> tuple:
            members = [projects_by_id[pid] for pid in cluster.member_ids if pid in projects_by_id]
            async with semaphore:
                label = await self.label(
                    members,
                    level=cluster.level,
                    number=_number(i),
                    parent_name=parent.name if parent else None,
                )
            return cluster.id, label

        outcomes = await asyncio.gather(
            *[_one(i, c) for i, c in enumerate(clusters)],
            return_exceptions=True,
        )

        labels: Dict[str, CauseLabel] = {}
        for cluster, outcome in zip(clusters, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Labeling task for {cluster.id} crashed: {outcome}")
                continue
            cluster_id, label = outcome
            labels[cluster_id] = label

        causes = []
        for i, cluster in enumerate(clusters):
            label = labels.get(cluster.id) or self.fallback_label(_number(i))
            members = [projects_by_id[pid] for pid in cluster.member_ids if pid in projects_by_id]
            color = palette_color(start_index + i) if parent is None else shade(parent.color, i + 1)
            causes.append(self.build_cause(cluster, label, members, color))

        by_source: Dict[str, int] = {}
        for cause in causes:
            by_source[cause.label_source.value] = by_source.get(cause.label_source.value, 0) + 1
        logger.info(
            f"Labeled {len(causes)} {'sub' if parent else 'top-level '}causes"
            f"{' of ' + parent.name if parent else ''}: {by_source}"
        )
        return causes
