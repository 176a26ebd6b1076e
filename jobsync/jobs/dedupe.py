from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging
from typing import Any, Literal

from opentelemetry import trace

from jobsync.core.config import Settings, get_settings
from jobsync.jobs.ledger import RunLog

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEDUPE_TYPE = "dedupe"
Criterion = Literal["title", "company", "description", "salary"]
DEFAULT_CRITERIA: tuple[Criterion, ...] = ("title", "company")
THRESHOLDS: dict[Criterion, int] = {"title": 80, "company": 90, "description": 70, "salary": 100}
DESCRIPTION_PREFIX_CHARS = 500


@dataclass(slots=True)
class PostingSnapshot:
    id: int
    title: str
    company: str | None
    description: str | None
    pay_range: str | None
    source_name: str | None = None


@dataclass(slots=True)
class PairScore:
    is_duplicate: bool
    scores: dict[str, int]
    # Advisory only: logged and stored with the pair, never used to decide.
    average: int | None
    reasons: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DuplicateCluster:
    anchor: PostingSnapshot
    duplicates: list[PostingSnapshot]
    pair_scores: list[PairScore]

    def to_dict(self) -> dict[str, Any]:
        return {
            "keep_id": self.anchor.id,
            "remove_ids": [row.id for row in self.duplicates],
            "jobs": [
                {
                    "id": row.id,
                    "title": row.title,
                    "company": row.company,
                    "source_name": row.source_name,
                    "pay_range": row.pay_range,
                }
                for row in [self.anchor, *self.duplicates]
            ],
            "similarity_scores": [score.average for score in self.pair_scores],
            "reasons": [", ".join(score.reasons) for score in self.pair_scores],
        }


def similarity(left: str | None, right: str | None) -> int:
    """Token-set Jaccard over lowercase whitespace tokens, scaled to 0-100."""
    a = (left or "").strip().lower()
    b = (right or "").strip().lower()
    if a == b:
        return 100
    return round(_jaccard(set(a.split()), set(b.split())) * 100)


def score_pair(
    left: PostingSnapshot,
    right: PostingSnapshot,
    *,
    criteria: Iterable[Criterion] = DEFAULT_CRITERIA,
) -> PairScore:
    """Duplicate iff every applicable criterion clears its own threshold."""
    selected = set(criteria)
    scores: dict[str, int] = {}
    reasons: list[str] = []
    is_duplicate = True

    if "title" in selected:
        scores["title"] = similarity(left.title, right.title)
    if "company" in selected and left.company and right.company:
        scores["company"] = similarity(left.company, right.company)
    if "salary" in selected and left.pay_range and right.pay_range:
        scores["salary"] = 100 if left.pay_range == right.pay_range else 0
    if "description" in selected and left.description and right.description:
        scores["description"] = similarity(
            left.description[:DESCRIPTION_PREFIX_CHARS],
            right.description[:DESCRIPTION_PREFIX_CHARS],
        )

    for name, score in scores.items():
        if score < THRESHOLDS[name]:
            is_duplicate = False
        elif name == "salary":
            reasons.append("exact salary match")
        else:
            reasons.append(f"{name} match ({score}%)")

    average = round(sum(scores.values()) / len(scores)) if scores else None
    return PairScore(is_duplicate=is_duplicate and bool(scores), scores=scores, average=average, reasons=reasons)


def find_duplicate_clusters(
    postings: list[PostingSnapshot],
    *,
    criteria: Iterable[Criterion] = DEFAULT_CRITERIA,
) -> list[DuplicateCluster]:
    """Single pass in input order; a clustered posting never anchors a new cluster."""
    selected = tuple(criteria)
    clustered: set[int] = set()
    clusters: list[DuplicateCluster] = []
    for index, anchor in enumerate(postings):
        if anchor.id in clustered:
            continue
        duplicates: list[PostingSnapshot] = []
        pair_scores: list[PairScore] = []
        for other in postings[index + 1 :]:
            if other.id in clustered:
                continue
            pair = score_pair(anchor, other, criteria=selected)
            if pair.is_duplicate:
                duplicates.append(other)
                pair_scores.append(pair)
                clustered.add(other.id)
        if duplicates:
            clustered.add(anchor.id)
            clusters.append(DuplicateCluster(anchor=anchor, duplicates=duplicates, pair_scores=pair_scores))
    return clusters


def normalize_criteria(criteria: Iterable[str] | None) -> tuple[Criterion, ...]:
    if not criteria:
        return DEFAULT_CRITERIA
    selected = []
    for name in criteria:
        lowered = name.strip().lower()
        if lowered not in THRESHOLDS:
            raise ValueError(f"unsupported dedupe criterion: {name}")
        if lowered not in selected:
            selected.append(lowered)
    return tuple(selected)  # type: ignore[return-value]


async def deduplicate(
    repository: Any,
    *,
    dry_run: bool = True,
    criteria: Iterable[str] | None = None,
    record_pairs: bool = True,
    settings: Settings | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings()
    run = RunLog(repository, DEDUPE_TYPE, flush_interval_seconds=settings.run_log_flush_interval_seconds)
    with tracer.start_as_current_span("dedupe.run"):
        try:
            selected = normalize_criteria(criteria)
            await run.start()
            if dry_run:
                run.log("Running in DRY RUN mode (no deletions)", "warning")
            else:
                run.log("Running in LIVE mode (duplicates will be deleted)")
            run.log(f"Criteria: {', '.join(selected)}")

            rows = await repository.list_postings_for_dedupe()
            postings = [_snapshot(row) for row in rows]
            run.log(f"Loaded {len(postings)} jobs")

            clusters = find_duplicate_clusters(postings, criteria=selected)
            duplicates_found = sum(len(cluster.duplicates) for cluster in clusters)
            for cluster in clusters:
                run.log(
                    f"Duplicate group of {len(cluster.duplicates) + 1}: keeping [{cluster.anchor.id}] "
                    f"{cluster.anchor.title}; duplicates {[row.id for row in cluster.duplicates]}",
                    "warning",
                )
            await run.maybe_flush()

            removed = 0
            if dry_run:
                if duplicates_found:
                    run.log(f"DRY RUN: would remove {duplicates_found} duplicate job(s)", "warning")
            else:
                if record_pairs:
                    await repository.record_duplicate_pairs(
                        [
                            {
                                "job_id_1": cluster.anchor.id,
                                "job_id_2": row.id,
                                "similarity_score": score.average or 0,
                                "resolved": True,
                            }
                            for cluster in clusters
                            for row, score in zip(cluster.duplicates, cluster.pair_scores)
                        ]
                    )
                for cluster in clusters:
                    removed += await repository.delete_postings([row.id for row in cluster.duplicates])
                    await run.maybe_flush()
                run.log(f"Removed {removed} duplicate job(s)", "success")

            run.stats.update({"duplicates_found": duplicates_found, "deleted": removed, "groups": len(clusters)})
            await run.complete(total_items=len(postings))
            return {
                "success": True,
                "sync_id": run.run_id,
                "dry_run": dry_run,
                "criteria": list(selected),
                "duplicates_found": duplicates_found,
                "duplicates_removed": removed,
                "groups": [cluster.to_dict() for cluster in clusters],
                "logs": list(run.entries),
            }
        except Exception as exc:
            logger.exception("deduplication failed")
            await run.fail(str(exc))
            return run.failure(str(exc))


def _snapshot(row: dict[str, Any]) -> PostingSnapshot:
    return PostingSnapshot(
        id=int(row["id"]),
        title=str(row.get("title") or ""),
        company=row.get("company"),
        description=row.get("description"),
        pay_range=row.get("pay_range"),
        source_name=row.get("source_name"),
    )


def _jaccard(left: set[str], right: set[str]) -> float:
    if not left or not right:
        return 0.0
    union = left.union(right)
    if not union:
        return 0.0
    return len(left.intersection(right)) / len(union)
