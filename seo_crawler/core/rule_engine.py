"""
Rule Engine - Evaluates the finding-rule catalogue against page evidence.

Design:
- A rule is a pure function of one FindingContext
- Each rule inspects only its own fields and yields at most one match
- Rules never observe each other's output
- The catalogue is an ordered registry; evaluation follows that order
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from seo_crawler.engines.base import (
    ActionTarget,
    CrawlFinding,
    FindingCategory,
    FindingContext,
    Severity,
    SuggestedAction,
)

logger = structlog.get_logger(__name__)

# ─────────────────────────────────────────────
# Rule Schema
# ─────────────────────────────────────────────


@dataclass(frozen=True)
class RuleMatch:
    """What a rule reports; the registry stamps url, id and category on it."""
    severity: Severity
    summary: str
    action_type: str
    notes: str
    evidence: dict[str, Any] = field(default_factory=dict)
    selector: str | None = None
    proposed_value: str | None = None


RuleCheck = Callable[[FindingContext], "RuleMatch | None"]


@dataclass(frozen=True)
class FindingRule:
    id: str
    category: FindingCategory
    check: RuleCheck

    def evaluate(self, ctx: FindingContext) -> CrawlFinding | None:
        match = self.check(ctx)
        if match is None:
            return None
        return CrawlFinding(
            url=ctx.url,
            category=self.category,
            rule_id=self.id,
            severity=match.severity,
            summary=match.summary,
            evidence=match.evidence,
            suggested_action=SuggestedAction(
                action_type=match.action_type,
                target=ActionTarget(url=ctx.url, selector=match.selector),
                proposed_value=match.proposed_value,
                notes=match.notes,
            ),
        )


# ─────────────────────────────────────────────
# Rule Registry
# ─────────────────────────────────────────────

class RuleRegistry:
    """
    Ordered catalogue of finding rules.
    Registration order is evaluation order.
    """

    def __init__(self) -> None:
        self._rules: list[FindingRule] = []

    def rule(self, rule_id: str, category: FindingCategory) -> Callable[[RuleCheck], RuleCheck]:
        """Decorator registering a check function under rule_id."""
        def decorator(check: RuleCheck) -> RuleCheck:
            if self.get_by_id(rule_id) is not None:
                raise ValueError(f"Duplicate rule id '{rule_id}'")
            self._rules.append(FindingRule(id=rule_id, category=category, check=check))
            return check
        return decorator

    def get_by_category(self, category: FindingCategory) -> list[FindingRule]:
        return [r for r in self._rules if r.category == category]

    def get_by_id(self, rule_id: str) -> FindingRule | None:
        return next((r for r in self._rules if r.id == rule_id), None)

    def get_all(self) -> tuple[FindingRule, ...]:
        return tuple(self._rules)

    def evaluate(self, ctx: FindingContext) -> list[CrawlFinding]:
        """Run every rule in catalogue order and collect the findings."""
        findings: list[CrawlFinding] = []
        for rule in self._rules:
            try:
                finding = rule.evaluate(ctx)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Rule evaluation error", rule_id=rule.id, url=ctx.url, error=str(e))
                continue
            if finding is not None:
                findings.append(finding)
        return findings


# ─────────────────────────────────────────────
# Score Calculator
# ─────────────────────────────────────────────

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 5,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


def calculate_health_score(page_count: int, findings: list[CrawlFinding]) -> int:
    """
    Site health score from 0-100.

    Formula:
    - Start at 100
    - Deduct a fixed penalty per finding by severity
    - Clamp to [0, 100]; a crawl with no pages scores 0
    """
    if page_count == 0:
        return 0

    score = 100
    for finding in findings:
        score -= SEVERITY_PENALTIES.get(finding.severity, 0)
    return max(0, min(100, score))
