"""Theme extraction, similarity grouping, cluster ranking and trend tracking."""

import logging
from collections import Counter, OrderedDict, defaultdict
from dataclasses import dataclass, field
from textwrap import dedent
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.analysis_models import (
    ClusterAnalysis, ClusterTrend, IssueCluster, ItemFailure, RepresentativeExample,
    SentimentResult, Severity, ThemeExtraction, ThemeOutcome, TrendStatus,
)
from ..core.constants import ClusterConstants, SentimentConstants
from ..core.errors import FeedbackHubError, InsufficientDataError, PermanentServiceError
from ..core.models import AnalysisConfig, FeedbackItem, Source
from ..core.scoring import centroid, cosine_similarity, growth_rate, mean
from ..core.themes import allowed_categories, theme_hint_for_categories
from ..services.semantic import SemanticSession, parse_json_object

logger = logging.getLogger(__name__)

THEME_PROMPT = dedent("""
TASK=THEME
Name the main subject of one piece of customer feedback ({source}).

{category_hint}

Return ONLY JSON: {{"label": "2-5 word theme label", "description": "one sentence", "category": "one of the categories"}}

<<<
{text}
>>>
""").strip()


def normalize_label(label: str) -> str:
    """Whitespace/case-normalized label used for exact de-duplication."""
    return " ".join(label.split()).lower()


@dataclass
class ThemeGroup:
    """Items whose theme labels were merged by similarity."""
    label: str
    description: str
    category: str
    item_ids: List[str]
    labels: List[str] = field(default_factory=list)  # normalized labels merged in
    vector: Optional[List[float]] = None  # member-weighted centroid of label embeddings
    item_vectors: Dict[str, Optional[List[float]]] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.item_ids)


@dataclass
class _LabelBucket:
    label: str
    item_ids: List[str] = field(default_factory=list)
    descriptions: Counter = field(default_factory=Counter)
    categories: Counter = field(default_factory=Counter)


class IssueClusterer:
    """Groups feedback into issue clusters by theme similarity."""

    name = "clustering"

    def __init__(self, session: SemanticSession, config: AnalysisConfig):
        self.session = session
        self.config = config
        self.categories = allowed_categories(config.custom_categories)
        self.category_hint = theme_hint_for_categories(config.custom_categories)

    # ---- Phase 1: theme extraction ----

    def build_prompt(self, item: FeedbackItem) -> str:
        return THEME_PROMPT.format(
            source=item.source.value.replace("_", " "),
            category_hint=self.category_hint,
            text=item.text[:SentimentConstants.MAX_TEXT_FOR_PROMPT],
        )

    def parse_theme(self, item_id: str, response: str) -> ThemeExtraction:
        data = parse_json_object(response)
        label = " ".join(str(data.get("label") or "").split())
        if not label:
            raise PermanentServiceError("Theme response has no label", operation="themes", item_id=item_id)
        category = str(data.get("category") or "other").strip().lower().replace(" ", "_")
        if category not in self.categories:
            category = "other"
        return ThemeExtraction(label=label, description=str(data.get("description") or "").strip(),
                               category=category)

    def extract_themes(self, items: Sequence[FeedbackItem], stage: str = "themes",
                       track_progress: bool = True) -> List[ThemeOutcome]:
        """One theme per item, in input order; failures are recorded per item."""
        if not items:
            return []
        slots = self.session.complete_batch([self.build_prompt(i) for i in items], stage=stage,
                                            track_progress=track_progress)
        outcomes = []
        for item, slot in zip(items, slots):
            error = slot.error
            if slot.ok:
                try:
                    outcomes.append(ThemeOutcome(item.id, theme=self.parse_theme(item.id, slot.value)))
                    continue
                except FeedbackHubError as e:
                    error = e
            error.item_id = error.item_id or item.id
            error.source = error.source or item.source.value
            outcomes.append(ThemeOutcome(item.id, error=ItemFailure.from_error(item.id, error)))

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(f"{stage}: extracted {len(items) - failed}/{len(items)} themes")
        return outcomes

    # ---- Phase 2: grouping ----

    def group(self, items: Sequence[FeedbackItem], themes: Sequence[ThemeOutcome],
              stage: str = "embed") -> List[ThemeGroup]:
        """
        De-duplicate themes by normalized label, embed each distinct label and
        agglomerate: repeatedly merge the most similar pair of groups while the
        cosine of their centroids exceeds the similarity threshold.
        """
        wanted = {item.id for item in items}
        buckets: "OrderedDict[str, _LabelBucket]" = OrderedDict()
        for outcome in themes:
            if not outcome.ok or outcome.item_id not in wanted:
                continue
            key = normalize_label(outcome.theme.label)
            bucket = buckets.setdefault(key, _LabelBucket(label=outcome.theme.label))
            bucket.item_ids.append(outcome.item_id)
            if outcome.theme.description:
                bucket.descriptions[outcome.theme.description] += 1
            bucket.categories[outcome.theme.category] += 1

        if not buckets:
            return []

        keys = list(buckets)
        slots = self.session.embed_batch([buckets[k].label for k in keys], stage=stage)
        failed = [keys[s.index] for s in slots if not s.ok]
        if failed:
            logger.warning(f"{stage}: {len(failed)} theme labels could not be embedded and stay ungrouped")

        groups = []
        for key, slot in zip(keys, slots):
            bucket = buckets[key]
            vector = slot.value if slot.ok else None
            groups.append(ThemeGroup(
                label=bucket.label,
                description=bucket.descriptions.most_common(1)[0][0] if bucket.descriptions else "",
                category=bucket.categories.most_common(1)[0][0],
                item_ids=list(bucket.item_ids),
                labels=[key],
                vector=vector,
                item_vectors={i: vector for i in bucket.item_ids},
            ))

        # the dominant bucket of a merged group names it
        sizes = {k: len(b.item_ids) for k, b in buckets.items()}
        threshold = self.config.similarity_threshold
        while True:
            best: Optional[Tuple[float, int, int]] = None
            for i in range(len(groups)):
                if groups[i].vector is None:
                    continue
                for j in range(i + 1, len(groups)):
                    if groups[j].vector is None:
                        continue
                    sim = cosine_similarity(groups[i].vector, groups[j].vector)
                    if sim > threshold and (best is None or sim > best[0]):
                        best = (sim, i, j)
            if best is None:
                break
            _, i, j = best
            groups[i] = self._merge(groups[i], groups[j], sizes)
            del groups[j]

        logger.info(f"Grouped {len(keys)} distinct themes into {len(groups)} groups")
        return groups

    @staticmethod
    def _merge(a: ThemeGroup, b: ThemeGroup, sizes: Dict[str, int]) -> ThemeGroup:
        head = a if max(sizes[k] for k in a.labels) >= max(sizes[k] for k in b.labels) else b
        categories = Counter()
        for g in (a, b):
            categories[g.category] += g.size
        category = head.category
        if categories[category] < max(categories.values()):
            category = categories.most_common(1)[0][0]
        return ThemeGroup(
            label=head.label,
            description=head.description,
            category=category,
            item_ids=a.item_ids + b.item_ids,
            labels=a.labels + b.labels,
            vector=centroid([a.vector, b.vector], [a.size, b.size]),
            item_vectors={**a.item_vectors, **b.item_vectors},
        )

    def group_by_source(self, items: Sequence[FeedbackItem], themes: Sequence[ThemeOutcome],
                        sources: Optional[Sequence[Source]] = None
                        ) -> Tuple[Dict[str, List[ThemeGroup]], List[InsufficientDataError]]:
        """Group each source on its own; a source with too few themed items is reported, not grouped."""
        themed = {o.item_id for o in themes if o.ok}
        items_by_source = defaultdict(list)
        for item in items:
            items_by_source[item.source].append(item)

        groups: Dict[str, List[ThemeGroup]] = {}
        errors: List[InsufficientDataError] = []
        for source in Source.ordered(sources if sources is not None else items_by_source):
            source_items = items_by_source.get(source, [])
            count = sum(1 for i in source_items if i.id in themed)
            if count < ClusterConstants.MIN_SOURCE_ITEMS:
                errors.append(InsufficientDataError(
                    f"{source.value} has {count} themed items; {ClusterConstants.MIN_SOURCE_ITEMS} needed "
                    "for per-source clustering",
                    operation="cluster_by_source",
                    source=source.value,
                ))
                continue
            groups[source.value] = self.group(source_items, themes, stage=f"embed:{source.value}")
        return groups, errors

    # ---- Phase 3: ranking ----

    def build_clusters(self, groups: Sequence[ThemeGroup], items: Sequence[FeedbackItem],
                       sentiment: Sequence[SentimentResult], corpus_size: int,
                       id_prefix: str = "cluster") -> List[IssueCluster]:
        """Rank groups into clusters with severity, examples and related ids."""
        items_by_id = {item.id: item for item in items}
        scores = {r.item_id: r.score for r in sentiment}

        built = []
        for group in groups:
            members = [items_by_id[i] for i in group.item_ids if i in items_by_id]
            if not members:
                continue
            member_scores = [scores[m.id] for m in members if m.id in scores]
            sentiment_mean = round(mean(member_scores), 4) if member_scores else None
            share = len(members) / corpus_size if corpus_size else 0.0
            examples = self._representatives(group, members)
            source_counts = Counter(m.source for m in members)
            cluster = IssueCluster(
                id="",
                theme=group.label,
                description=group.description,
                category=group.category,
                member_count=len(members),
                percentage=round(100.0 * share, 2),
                severity=self._severity(share, sentiment_mean),
                sentiment_mean=sentiment_mean,
                examples=examples,
                member_ids=[m.id for m in members],
                source_counts={s.value: source_counts[s] for s in Source.ordered(source_counts)},
            )
            built.append((cluster, group))

        built.sort(key=lambda pair: (
            -pair[0].member_count,
            -pair[0].severity.rank,
            min(e.timestamp for e in pair[0].examples),
            pair[0].theme,
        ))
        for n, (cluster, _) in enumerate(built, 1):
            cluster.id = f"{id_prefix}-{n:03d}"

        for a, (cluster, group) in enumerate(built):
            for b, (other, other_group) in enumerate(built):
                if a == b or group.vector is None or other_group.vector is None:
                    continue
                if cosine_similarity(group.vector, other_group.vector) >= ClusterConstants.RELATED_THRESHOLD:
                    cluster.related_cluster_ids.append(other.id)

        return [cluster for cluster, _ in built]

    @staticmethod
    def _severity(share: float, sentiment_mean: Optional[float]) -> Severity:
        if share > ClusterConstants.HIGH_SHARE or (
                sentiment_mean is not None and sentiment_mean < ClusterConstants.HIGH_SEVERITY_SENTIMENT):
            return Severity.HIGH
        if share > ClusterConstants.MEDIUM_SHARE:
            return Severity.MEDIUM
        return Severity.LOW

    def _representatives(self, group: ThemeGroup, members: Sequence[FeedbackItem]) -> List[RepresentativeExample]:
        def distance(item: FeedbackItem) -> float:
            vector = group.item_vectors.get(item.id)
            if vector is None or group.vector is None:
                return 0.0
            return 1.0 - cosine_similarity(vector, group.vector)

        ranked = sorted(members, key=lambda m: (distance(m), m.timestamp, m.id))
        count = max(1, self.config.representative_count)
        return [
            RepresentativeExample(item_id=m.id, source=m.source.value, text=m.text, timestamp=m.timestamp)
            for m in ranked[:count]
        ]

    def cluster_by_source(self, items: Sequence[FeedbackItem], themes: Sequence[ThemeOutcome],
                          sentiment: Sequence[SentimentResult]
                          ) -> Tuple[Dict[str, List[IssueCluster]], List[InsufficientDataError]]:
        groups_by_source, errors = self.group_by_source(items, themes)
        return self.build_source_clusters(groups_by_source, items, sentiment), errors

    def build_source_clusters(self, groups_by_source: Dict[str, List[ThemeGroup]],
                              items: Sequence[FeedbackItem],
                              sentiment: Sequence[SentimentResult]) -> Dict[str, List[IssueCluster]]:
        clusters = {}
        for source, groups in groups_by_source.items():
            source_items = [i for i in items if i.source.value == source]
            clusters[source] = self.build_clusters(groups, source_items, sentiment, len(source_items),
                                                   id_prefix=f"{source}-cluster")
        return clusters

    # ---- Trends ----

    def _label_vectors(self, labels: Sequence[str], stage: str) -> List[Optional[List[float]]]:
        slots = self.session.embed_batch(list(labels), stage=stage)
        return [s.value if s.ok else None for s in slots]

    def track_trends(self, clusters: Sequence[IssueCluster],
                     historical: Sequence[IssueCluster]) -> List[ClusterTrend]:
        """
        Compare member counts with a historical cluster list matched by theme.

        A cluster with no historical match is emerging with no growth rate.
        """
        if not clusters:
            return []
        current_vectors = self._label_vectors([c.theme for c in clusters], "embed:trends")
        past_vectors = self._label_vectors([h.theme for h in historical], "embed:trends") if historical else []

        trends = []
        for cluster, vector in zip(clusters, current_vectors):
            match = self._best_match(cluster.theme, vector, historical, past_vectors)
            if match is None:
                trends.append(ClusterTrend(cluster.id, cluster.theme, cluster.member_count, 0, None,
                                           TrendStatus.EMERGING))
                continue
            growth = growth_rate(cluster.member_count, match.member_count)
            if growth is None or growth > ClusterConstants.TREND_GROWTH:
                status = TrendStatus.EMERGING
            elif growth < -ClusterConstants.TREND_GROWTH:
                status = TrendStatus.RESOLVING
            else:
                status = TrendStatus.STABLE
            trends.append(ClusterTrend(cluster.id, cluster.theme, cluster.member_count, match.member_count,
                                       round(growth, 4) if growth is not None else None, status))
        return trends

    def _best_match(self, theme: str, vector, historical, past_vectors) -> Optional[IssueCluster]:
        best, best_sim = None, self.config.similarity_threshold
        for past, past_vector in zip(historical, past_vectors):
            if normalize_label(past.theme) == normalize_label(theme):
                return past
            if vector is None or past_vector is None:
                continue
            sim = cosine_similarity(vector, past_vector)
            if sim > best_sim:
                best, best_sim = past, sim
        return best

    def analyze(self, items: Sequence[FeedbackItem], sentiment: Sequence[SentimentResult],
                historical: Optional[Sequence[IssueCluster]] = None) -> ClusterAnalysis:
        """Run every phase in sequence."""
        outcomes = self.extract_themes(items)
        clusters = self.build_clusters(self.group(items, outcomes), items, sentiment, len(items))
        by_source, errors = self.cluster_by_source(items, outcomes, sentiment)
        for error in errors:
            logger.warning(f"⚠️ {error.message}")
        trends = self.track_trends(clusters, historical) if historical else []
        return ClusterAnalysis(clusters=clusters, clusters_by_source=by_source, trends=trends, outcomes=outcomes)
