# app/domain/services/discrepancy_engine.py
"""
Discrepancy Resolution Engine.

Reconciles every field's Facts (user entry, OCR-extracted documents,
AIS / Form 26AS / broker feeds) into exactly one accepted value with a
provenance trail, and surfaces disagreements as Discrepancies.

Rules:
  * one source reporting agreeing values        -> accept, "single_source"
  * all sources agree within tolerance          -> accept highest confidence, "agreement"
  * sources disagree                            -> accept best of the largest
                                                   agreeing cluster and raise a
                                                   Discrepancy against the rest
  * delta > material threshold, no manual pick  -> Discrepancy is blocking
  * manual resolutions are never replaced by an automated pass

reconcile() is pure and deterministic: the same facts and the same manual
resolutions always produce equal Resolutions and Discrepancies.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from app.domain.models.filing import (
    Discrepancy,
    DiscrepancyStatus,
    Fact,
    FactSource,
    Resolution,
    Severity,
)

logger = logging.getLogger("discrepancy_engine")

D = lambda x: Decimal(str(x)) if x else Decimal("0")  # noqa: E731

SINGLE_SOURCE = "single_source"
AGREEMENT = "agreement"
MAJORITY_AGREEMENT = "majority_agreement"
PROVISIONAL = "highest_confidence_provisional"
MANUAL = "manual"

# Tie-break only; confidence decides first.
_SOURCE_RANK = {
    FactSource.AGGREGATED_STATEMENT: 3,
    FactSource.OCR_EXTRACTED: 2,
    FactSource.USER_ENTERED: 1,
}


# ---------------------------------------------------------------------------
# Policy / result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReconciliationPolicy:
    absolute_tolerance: Decimal = Decimal("1")
    relative_tolerance_pct: Decimal = Decimal("2")
    material_threshold_pct: Decimal = Decimal("10")
    aggregated_baseline_confidence: float = 0.95

    @classmethod
    def from_settings(cls, settings=None) -> ReconciliationPolicy:
        if settings is None:
            from app.config.settings import get_settings

            settings = get_settings()
        return cls(
            absolute_tolerance=D(settings.DISCREPANCY_ABSOLUTE_TOLERANCE),
            relative_tolerance_pct=D(settings.DISCREPANCY_RELATIVE_TOLERANCE_PCT),
            material_threshold_pct=D(settings.DISCREPANCY_MATERIAL_THRESHOLD_PCT),
            aggregated_baseline_confidence=float(settings.AGGREGATED_STATEMENT_BASELINE_CONFIDENCE),
        )

    def agrees(self, a: Decimal, b: Decimal) -> bool:
        larger = max(abs(a), abs(b))
        tolerance = max(self.absolute_tolerance, larger * self.relative_tolerance_pct / 100)
        return abs(a - b) <= tolerance

    def effective_confidence(self, fact: Fact) -> float:
        if fact.source == FactSource.AGGREGATED_STATEMENT:
            return max(fact.confidence, self.aggregated_baseline_confidence)
        return fact.confidence


@dataclass
class ReconciliationResult:
    resolutions: dict[str, Resolution] = field(default_factory=dict)
    discrepancies: list[Discrepancy] = field(default_factory=list)

    @property
    def blocking(self) -> list[Discrepancy]:
        return [d for d in self.discrepancies if d.is_open_blocking]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _best(facts: list[Fact], policy: ReconciliationPolicy) -> Fact:
    return max(
        facts,
        key=lambda f: (policy.effective_confidence(f), _SOURCE_RANK[f.source], f.fact_id),
    )


def _clusters(facts: list[Fact], policy: ReconciliationPolicy) -> list[list[Fact]]:
    """Clusters of agreeing values, in ascending amount order.

    Each value joins the open cluster only if it agrees with the cluster's
    smallest value, so every pair inside a cluster agrees within tolerance.
    """
    ordered = sorted(facts, key=lambda f: (f.amount, f.fact_id))
    clusters: list[list[Fact]] = []
    for fact in ordered:
        if clusters and policy.agrees(clusters[-1][0].amount, fact.amount):
            clusters[-1].append(fact)
        else:
            clusters.append([fact])
    return clusters


def _discrepancy(
    field_id: str,
    accepted: Resolution,
    outliers: list[Fact],
    policy: ReconciliationPolicy,
    manual: bool,
) -> Discrepancy:
    outliers = sorted(outliers, key=lambda f: (f.amount, f.fact_id))
    worst = max(outliers, key=lambda f: (abs(f.amount - accepted.amount), f.fact_id))
    delta = abs(worst.amount - accepted.amount)
    larger = max(abs(worst.amount), abs(accepted.amount))
    delta_pct = (delta / larger * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) if larger else Decimal("0")
    material = delta_pct > policy.material_threshold_pct
    return Discrepancy(
        field_id=field_id,
        accepted_fact_id=accepted.fact_id,
        accepted_amount=accepted.amount,
        conflicting_fact_ids=tuple(f.fact_id for f in outliers),
        conflicting_amounts=tuple(f.amount for f in outliers),
        delta=delta,
        delta_pct=delta_pct,
        severity=Severity.BLOCKING if material and not manual else Severity.INFORMATIONAL,
        status=DiscrepancyStatus.RESOLVED if manual else DiscrepancyStatus.OPEN,
    )


def _resolve_field(
    field_id: str,
    facts: list[Fact],
    policy: ReconciliationPolicy,
) -> tuple[Resolution, list[Fact]]:
    """Engine-proposed resolution for one field plus the facts it disagrees with."""
    clusters = _clusters(facts, policy)
    if len(clusters) == 1:
        best = _best(facts, policy)
        sources = {f.source for f in facts}
        reason = SINGLE_SOURCE if len(sources) == 1 else AGREEMENT
        return _auto(field_id, best, reason), []

    winner = max(
        clusters,
        key=lambda c: (len(c), policy.effective_confidence(_best(c, policy)), _best(c, policy).fact_id),
    )
    best = _best(winner, policy)
    reason = MAJORITY_AGREEMENT if len(winner) > 1 else PROVISIONAL
    outliers = [f for c in clusters if c is not winner for f in c]
    return _auto(field_id, best, reason), outliers


def _auto(field_id: str, fact: Fact, reason: str) -> Resolution:
    return Resolution(
        field_id=field_id,
        fact_id=fact.fact_id,
        source=fact.source,
        amount=fact.amount,
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def manual_resolution(fact: Fact, resolved_by: str, note: str = "") -> Resolution:
    """A user/CA choice of ``fact`` for its field; only another manual action replaces it."""
    return Resolution(
        field_id=fact.field_id,
        fact_id=fact.fact_id,
        source=fact.source,
        amount=fact.amount,
        reason=MANUAL,
        manual_override=True,
        note=note,
        resolved_by=resolved_by,
    )


def reconcile(
    facts: Iterable[Fact],
    existing: dict[str, Resolution] | None = None,
    policy: ReconciliationPolicy | None = None,
) -> ReconciliationResult:
    """Recompute resolutions and discrepancies for every field with facts.

    ``existing`` is consulted only for manual overrides, which are carried
    over untouched. Engine resolutions are always recomputed from scratch.
    """
    policy = policy or ReconciliationPolicy()
    existing = existing or {}

    by_field: dict[str, list[Fact]] = defaultdict(list)
    for fact in facts:
        by_field[fact.field_id].append(fact)

    result = ReconciliationResult()
    # Manual picks survive even when no fact backs the field any more
    for field_id, res in existing.items():
        if res.manual_override:
            result.resolutions[field_id] = res

    for field_id in sorted(by_field):
        field_facts = by_field[field_id]
        manual = existing.get(field_id)
        manual = manual if manual is not None and manual.manual_override else None

        if manual is not None:
            outliers = [f for f in field_facts if not policy.agrees(f.amount, manual.amount)]
            if outliers:
                result.discrepancies.append(_discrepancy(field_id, manual, outliers, policy, manual=True))
            continue

        proposed, outliers = _resolve_field(field_id, field_facts, policy)
        result.resolutions[field_id] = proposed
        if outliers:
            disc = _discrepancy(field_id, proposed, outliers, policy, manual=False)
            result.discrepancies.append(disc)
            logger.info(
                "Discrepancy on %s: accepted %s, conflicting %s (%s%%, %s)",
                field_id, proposed.amount, list(disc.conflicting_amounts),
                disc.delta_pct, disc.severity.value,
            )

    return result
