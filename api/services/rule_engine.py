"""Automation rule engine: decides which rules fire for a context."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.automation import Action, AutomationContext, AutomationRule
from database.repositories.rule_repo import AutomationRuleRepository
from shared.result import ErrorCode, Result

logger = logging.getLogger(__name__)


@dataclass
class RuleEvaluation:
    """How one rule judged a context."""
    rule_id: str
    rule_name: str
    should_execute: bool
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TriggeredRule:
    """A rule that fired, with the actions it asks for in order."""
    rule: AutomationRule
    actions: List[Action]


@dataclass
class EvaluationReport:
    """Result of evaluating every rule of a source."""
    evaluations: List[RuleEvaluation] = field(default_factory=list)
    triggered: List[TriggeredRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rules_evaluated": len(self.evaluations),
            "rules_triggered": len(self.triggered),
            "evaluations": [
                {
                    "rule_id": e.rule_id,
                    "rule_name": e.rule_name,
                    "should_execute": e.should_execute,
                    "reason": e.reason,
                    "error": e.error
                }
                for e in self.evaluations
            ]
        }


def evaluate_rules(rules: List[AutomationRule], context: AutomationContext) -> EvaluationReport:
    """
    Evaluate rules against a context without touching storage.

    A rule that raises is disqualified for this context only; its siblings
    are still evaluated.
    """
    report = EvaluationReport()
    for rule in rules:
        try:
            reason = rule.rejection_reason(context)
        except Exception as e:
            logger.error(f"Rule {rule.id} ({rule.name}) failed to evaluate: {e}")
            report.evaluations.append(RuleEvaluation(rule.id, rule.name, False, "evaluation failed", str(e)))
            continue

        fires = reason is None
        report.evaluations.append(RuleEvaluation(rule.id, rule.name, fires, reason))
        if fires:
            report.triggered.append(TriggeredRule(rule=rule, actions=list(rule.actions)))
    return report


class RuleEngine:
    """Loads a source's rules, evaluates them and keeps their execution history."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.rule_repo = AutomationRuleRepository(db)

    async def evaluate(self, context: AutomationContext, rules: Optional[List[AutomationRule]] = None) -> EvaluationReport:
        if rules is None:
            rules = await self.rule_repo.list_for_source(context.source_id)
        report = evaluate_rules(rules, context)
        logger.info(
            f"Evaluated {len(report.evaluations)} rule(s) for source {context.source_id} "
            f"on {context.trigger.type.value}: {len(report.triggered)} triggered"
        )
        return report

    async def record_execution(self, rule: AutomationRule, executed_at: datetime) -> AutomationRule:
        """Persist an execution; falls back to the in-memory snapshot if the rule vanished."""
        stored = await self.rule_repo.record_execution(rule.id, executed_at)
        return stored or rule.record_execution(executed_at)

    async def create_rule(
        self,
        source_id: str,
        name: str,
        trigger: Any,
        conditions: Optional[List[Any]] = None,
        actions: Optional[List[Any]] = None,
        enabled: bool = True
    ) -> Result[AutomationRule]:
        result = AutomationRule.create(source_id, name, trigger, conditions, actions, enabled)
        if not result.success:
            return result
        await self.rule_repo.save(result.value)
        logger.info(f"Created automation rule {result.value.id} ({result.value.name}) for source {source_id}")
        return result

    async def set_rule_enabled(self, rule_id: str, enabled: bool) -> Result[AutomationRule]:
        rule = await self.rule_repo.get(rule_id)
        if rule is None:
            return Result.fail(ErrorCode.NOT_FOUND, f"Automation rule {rule_id} not found", {"rule_id": rule_id})
        if enabled and not rule.actions:
            return Result.fail(ErrorCode.VALIDATION_ERROR, "At least one action is required", {"rule_id": rule_id})
        updated = await self.rule_repo.set_enabled(rule_id, enabled)
        return Result.ok(updated or rule.set_enabled(enabled))

    async def get_rules(self, source_id: str, enabled_only: bool = False) -> List[AutomationRule]:
        return await self.rule_repo.list_for_source(source_id, enabled_only)
