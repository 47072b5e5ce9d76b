"""Runs triggered automation rules: the "do" half of decide/do."""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.automation import (
    AutomationContext,
    AutomationRule,
    CreateTaskAction,
    GenerateArticlesAction,
    SendNotificationAction,
    TriggerDescriptor,
    TriggerType,
    UpdateSourceAction,
)
from api.models.feed_item import FeedItemModel, FeedItemSummary
from api.models.source import AutomationFlags, SourceSnapshot
from api.services.event_bus import AUTOMATION_ACTION_REQUESTED, DomainEvent, EventBus
from api.services.generation import ArticleGenerator
from api.services.rule_engine import RuleEngine
from database.repositories.feed_item_repo import FeedItemRepository
from database.repositories.rule_repo import AutomationRuleRepository
from database.repositories.source_repo import SourceRepository
from shared.config import settings
from shared.utils import get_utc_now

logger = logging.getLogger(__name__)


@dataclass
class ActionOutcome:
    """What executing one action did."""
    rule_id: str
    action_type: str
    success: bool
    article_ids: List[str] = field(default_factory=list)
    failed_items: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "action_type": self.action_type,
            "success": self.success,
            "article_ids": self.article_ids,
            "failed_items": self.failed_items,
            "error": self.error
        }


@dataclass
class AutomationRunReport:
    """Summary of one automation run for a source."""
    source_id: str
    trigger_type: str
    rules_evaluated: int = 0
    rules_triggered: int = 0
    outcomes: List[ActionOutcome] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def articles_generated(self) -> List[str]:
        return [article_id for outcome in self.outcomes for article_id in outcome.article_ids]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "trigger_type": self.trigger_type,
            "rules_evaluated": self.rules_evaluated,
            "rules_triggered": self.rules_triggered,
            "actions_executed": len(self.outcomes),
            "articles_generated": self.articles_generated,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "duration_ms": self.duration_ms
        }


class ActionExecutor:
    """Executes declarative actions returned by the rule engine."""

    def __init__(self, generator: ArticleGenerator, event_bus: EventBus, item_delay: Optional[float] = None):
        self.generator = generator
        self.event_bus = event_bus
        self.item_delay = settings.generation_item_delay if item_delay is None else item_delay
        self._handlers: Dict[type, Callable] = {
            GenerateArticlesAction: self._generate_articles,
            SendNotificationAction: self._request_external,
            UpdateSourceAction: self._request_external,
            CreateTaskAction: self._request_external,
        }

    async def execute(
        self,
        action: Any,
        rule: AutomationRule,
        context: AutomationContext,
        flags: AutomationFlags
    ) -> ActionOutcome:
        handler = self._handlers.get(type(action))
        if handler is None:
            raise ValueError(f"Unhandled action type: {type(action).__name__}")
        return await handler(action, rule, context, flags)

    async def _generate_articles(
        self,
        action: GenerateArticlesAction,
        rule: AutomationRule,
        context: AutomationContext,
        flags: AutomationFlags
    ) -> ActionOutcome:
        outcome = ActionOutcome(rule_id=rule.id, action_type=action.type, success=True)

        # A manual trigger is an explicit request and overrides the source switch
        if not flags.auto_generate and context.trigger.type != TriggerType.MANUAL:
            logger.info(f"Auto-generation disabled for source {context.source_id}; skipping rule {rule.id}")
            outcome.success = False
            outcome.error = "Auto-generation is disabled for this source"
            return outcome

        items = context.new_feed_items
        if action.parameters.max_items is not None:
            items = items[:action.parameters.max_items]

        results = await self.generator.generate_batch([item.id for item in items], flags, self.item_delay)
        for item, result in zip(items, results):
            if result.success:
                outcome.article_ids.append(result.value["_id"])
            else:
                outcome.failed_items.append(item.id)

        if outcome.failed_items:
            outcome.success = bool(outcome.article_ids)
            outcome.error = f"{len(outcome.failed_items)} feed item(s) could not be generated"
        return outcome

    async def _request_external(
        self,
        action: Any,
        rule: AutomationRule,
        context: AutomationContext,
        flags: AutomationFlags
    ) -> ActionOutcome:
        """Actions outside the core are handed to whoever subscribes to them."""
        await self.event_bus.publish(DomainEvent(
            event_type=AUTOMATION_ACTION_REQUESTED,
            aggregate_id=rule.id,
            aggregate_type="AutomationRule",
            data={
                "action_type": action.type,
                "parameters": action.parameters,
                "rule_id": rule.id,
                "source_id": context.source_id,
                "feed_item_ids": [item.id for item in context.new_feed_items]
            }
        ))
        return ActionOutcome(rule_id=rule.id, action_type=action.type, success=True)


class ContentAutomationService:
    """Evaluates a context, runs the triggered rules' actions in order and records executions."""

    def __init__(self, rule_engine: RuleEngine, executor: ActionExecutor):
        self.rule_engine = rule_engine
        self.executor = executor

    async def run(self, context: AutomationContext) -> AutomationRunReport:
        started = time.monotonic()
        flags = AutomationFlags.from_configuration(context.source.configuration if context.source else None)
        evaluation = await self.rule_engine.evaluate(context)

        report = AutomationRunReport(
            source_id=context.source_id,
            trigger_type=context.trigger.type.value,
            rules_evaluated=len(evaluation.evaluations),
            rules_triggered=len(evaluation.triggered)
        )

        for triggered in evaluation.triggered:
            for action in triggered.actions:
                outcome = await self.executor.execute(action, triggered.rule, context, flags)
                report.outcomes.append(outcome)
            await self.rule_engine.record_execution(triggered.rule, context.now)

        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Automation for source {context.source_id}: {report.rules_triggered} rule(s) fired, "
            f"{len(report.articles_generated)} article(s) generated in {report.duration_ms}ms"
        )
        return report


class NewFeedItemsHandler:
    """Event bus handler that starts automation when new feed items arrive."""

    def __init__(self, automation: ContentAutomationService, db: AsyncIOMotorDatabase):
        self.automation = automation
        self.source_repo = SourceRepository(db)

    async def handle(self, event: DomainEvent):
        data = event.data
        source_id = data["source_id"]
        source = await self.source_repo.get(source_id)
        if source is None:
            source = SourceSnapshot(
                id=source_id,
                name=data.get("source_name") or "",
                type=data.get("source_type") or "rss",
                configuration=data.get("source_configuration") or {}
            )

        context = AutomationContext(
            source_id=source_id,
            trigger=TriggerDescriptor(
                type=TriggerType.NEW_FEED_ITEMS,
                timestamp=event.occurred_at,
                data={"event_id": event.event_id}
            ),
            new_feed_items=[FeedItemSummary.model_validate(item) for item in data.get("new_feed_items", [])],
            source=source
        )
        await self.automation.run(context)


async def build_context_from_storage(
    db: AsyncIOMotorDatabase,
    source_id: str,
    trigger_type: TriggerType,
    now: datetime,
    data: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None
) -> AutomationContext:
    """Rebuild a context from stored state: the source snapshot and its pending items."""
    source = await SourceRepository(db).get(source_id)
    pending = await FeedItemRepository(db).list_pending(source_id, limit=limit or settings.generation_batch_size)
    return AutomationContext(
        source_id=source_id,
        trigger=TriggerDescriptor(type=trigger_type, timestamp=now, data=data or {}),
        new_feed_items=[FeedItemModel.model_validate(doc).to_summary() for doc in pending],
        source=source
    )


class ScheduledAutomationDriver:
    """Periodically evaluates scheduled rules against work re-derived from storage."""

    def __init__(self, db: AsyncIOMotorDatabase, automation: ContentAutomationService):
        self.db = db
        self.automation = automation
        self.rule_repo = AutomationRuleRepository(db)

    async def run_once(self, now: Optional[datetime] = None) -> List[AutomationRunReport]:
        now = now or get_utc_now()
        rules = await self.rule_repo.list_by_trigger(TriggerType.SCHEDULED)
        source_ids = list(dict.fromkeys(rule.source_id for rule in rules))

        reports = []
        for source_id in source_ids:
            context = await build_context_from_storage(self.db, source_id, TriggerType.SCHEDULED, now)
            reports.append(await self.automation.run(context))
        return reports

