"""Automation rule entities and their evaluation.

A rule is a flat trigger -> conditions -> actions tuple owned by one source.
Triggers, conditions and actions are closed tagged variants keyed on ``type``;
each category has exactly one dispatch table, and an unknown variant is a
programming error.

Evaluation is pure: everything it needs, including "now", comes from the
``AutomationContext`` it is given.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from api.models.feed_item import FeedItemSummary
from api.models.source import SourceSnapshot
from shared.result import ErrorCode, Result, field_errors
from shared.utils import ensure_utc, generate_rule_id, get_utc_now


class TriggerType(str, Enum):
    """Trigger type enumeration."""
    NEW_FEED_ITEMS = "new_feed_items"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class ConditionType(str, Enum):
    """Condition type enumeration."""
    TIME_RANGE = "time_range"
    ITEM_COUNT = "item_count"
    CONTENT_FILTER = "content_filter"
    SOURCE_STATUS = "source_status"


class ActionType(str, Enum):
    """Action type enumeration."""
    GENERATE_ARTICLES = "generate_articles"
    SEND_NOTIFICATION = "send_notification"
    UPDATE_SOURCE = "update_source"
    CREATE_TASK = "create_task"


# Triggers

class ScheduledParameters(BaseModel):
    interval_minutes: int = Field(default=60, ge=1)
    start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    end_hour: Optional[int] = Field(default=None, ge=0, le=24)


class NewFeedItemsTrigger(BaseModel):
    type: Literal["new_feed_items"] = "new_feed_items"
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ScheduledTrigger(BaseModel):
    type: Literal["scheduled"] = "scheduled"
    parameters: ScheduledParameters = Field(default_factory=ScheduledParameters)


class ManualTrigger(BaseModel):
    type: Literal["manual"] = "manual"
    parameters: Dict[str, Any] = Field(default_factory=dict)


Trigger = Annotated[
    Union[NewFeedItemsTrigger, ScheduledTrigger, ManualTrigger],
    Field(discriminator="type"),
]


# Conditions

class TimeRangeParameters(BaseModel):
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=24)
    days_of_week: Optional[List[int]] = None  # 0 = Monday
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is not None and any(day < 0 or day > 6 for day in v):
            raise ValueError("days_of_week must contain values 0-6")
        return v


class ItemCountParameters(BaseModel):
    min_items: int = Field(default=1, ge=0)
    max_items: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_bounds(self) -> "ItemCountParameters":
        if self.max_items is not None and self.max_items < self.min_items:
            raise ValueError("max_items must be greater than or equal to min_items")
        return self


class ContentFilterParameters(BaseModel):
    keywords: List[str] = Field(default_factory=list)
    exclude_keywords: List[str] = Field(default_factory=list)
    min_matches: int = Field(default=1, ge=0)


class SourceStatusParameters(BaseModel):
    allowed_statuses: List[str] = Field(default_factory=lambda: ["active"], min_length=1)


class TimeRangeCondition(BaseModel):
    type: Literal["time_range"] = "time_range"
    parameters: TimeRangeParameters


class ItemCountCondition(BaseModel):
    type: Literal["item_count"] = "item_count"
    parameters: ItemCountParameters = Field(default_factory=ItemCountParameters)


class ContentFilterCondition(BaseModel):
    type: Literal["content_filter"] = "content_filter"
    parameters: ContentFilterParameters = Field(default_factory=ContentFilterParameters)


class SourceStatusCondition(BaseModel):
    type: Literal["source_status"] = "source_status"
    parameters: SourceStatusParameters = Field(default_factory=SourceStatusParameters)


Condition = Annotated[
    Union[TimeRangeCondition, ItemCountCondition, ContentFilterCondition, SourceStatusCondition],
    Field(discriminator="type"),
]


# Actions

class GenerateArticlesParameters(BaseModel):
    max_items: Optional[int] = Field(default=None, ge=1)


class GenerateArticlesAction(BaseModel):
    type: Literal["generate_articles"] = "generate_articles"
    parameters: GenerateArticlesParameters = Field(default_factory=GenerateArticlesParameters)


class SendNotificationAction(BaseModel):
    type: Literal["send_notification"] = "send_notification"
    parameters: Dict[str, Any] = Field(default_factory=dict)


class UpdateSourceAction(BaseModel):
    type: Literal["update_source"] = "update_source"
    parameters: Dict[str, Any] = Field(default_factory=dict)


class CreateTaskAction(BaseModel):
    type: Literal["create_task"] = "create_task"
    parameters: Dict[str, Any] = Field(default_factory=dict)


Action = Annotated[
    Union[GenerateArticlesAction, SendNotificationAction, UpdateSourceAction, CreateTaskAction],
    Field(discriminator="type"),
]


# Context

class TriggerDescriptor(BaseModel):
    """What caused an evaluation and when."""
    type: TriggerType
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)


class AutomationContext(BaseModel):
    """Transient input to rule evaluation; never persisted."""
    source_id: str
    trigger: TriggerDescriptor
    new_feed_items: List[FeedItemSummary] = Field(default_factory=list)
    source: Optional[SourceSnapshot] = None

    @property
    def now(self) -> datetime:
        return ensure_utc(self.trigger.timestamp)


# Rule

class AutomationRule(BaseModel):
    """Immutable automation rule snapshot."""
    id: str = Field(alias="_id")
    source_id: str
    name: str
    enabled: bool = True
    trigger: Trigger
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True
        frozen = True

    @model_validator(mode="after")
    def check_enabled_has_actions(self) -> "AutomationRule":
        if self.enabled and not self.actions:
            raise ValueError("An enabled rule must have at least one action")
        return self

    @classmethod
    def create(
        cls,
        source_id: Optional[str],
        name: Optional[str],
        trigger: Any,
        conditions: Optional[List[Any]] = None,
        actions: Optional[List[Any]] = None,
        enabled: bool = True,
        now: Optional[datetime] = None
    ) -> Result["AutomationRule"]:
        """Validated factory for new rules."""
        if not source_id or not source_id.strip():
            return Result.fail(ErrorCode.VALIDATION_ERROR, "Source ID is required", {"field": "source_id"})
        if not name or not name.strip():
            return Result.fail(ErrorCode.VALIDATION_ERROR, "Rule name is required", {"field": "name"})
        if trigger is None:
            return Result.fail(ErrorCode.VALIDATION_ERROR, "Trigger is required", {"field": "trigger"})
        if not actions:
            return Result.fail(ErrorCode.VALIDATION_ERROR, "At least one action is required", {"field": "actions"})

        now = now or get_utc_now()
        try:
            rule = cls(
                id=generate_rule_id(),
                source_id=source_id.strip(),
                name=name.strip(),
                enabled=enabled,
                trigger=trigger,
                conditions=conditions or [],
                actions=actions,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            return Result.fail(ErrorCode.VALIDATION_ERROR, "Invalid automation rule", {"errors": field_errors(e)})
        return Result.ok(rule)

    def should_execute(self, context: AutomationContext) -> bool:
        """enabled AND trigger matches AND every condition holds."""
        return self.rejection_reason(context) is None

    def rejection_reason(self, context: AutomationContext) -> Optional[str]:
        """What keeps the rule from firing for a context; None when it fires."""
        if not self.enabled:
            return "rule is disabled"
        if not trigger_matches(self.trigger, self, context):
            return f"trigger {self.trigger.type} did not match"
        for condition in self.conditions:
            if not condition_holds(condition, context):
                return f"condition {condition.type} not met"
        return None

    def record_execution(self, executed_at: Optional[datetime] = None) -> "AutomationRule":
        executed_at = executed_at or get_utc_now()
        return self.model_copy(update={
            "execution_count": self.execution_count + 1,
            "last_executed_at": executed_at,
            "updated_at": executed_at,
        })

    def set_enabled(self, enabled: bool, at: Optional[datetime] = None) -> "AutomationRule":
        return self.model_copy(update={"enabled": enabled, "updated_at": at or get_utc_now()})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="python")


# Trigger dispatch

def _match_new_feed_items(trigger: NewFeedItemsTrigger, rule: AutomationRule, context: AutomationContext) -> bool:
    return (
        context.trigger.type == TriggerType.NEW_FEED_ITEMS
        and context.source_id == rule.source_id
        and len(context.new_feed_items) > 0
    )


def _match_scheduled(trigger: ScheduledTrigger, rule: AutomationRule, context: AutomationContext) -> bool:
    if context.trigger.type != TriggerType.SCHEDULED or context.source_id != rule.source_id:
        return False

    params = trigger.parameters
    now = context.now
    if params.start_hour is not None and params.end_hour is not None:
        if not _hour_in_window(now.hour, params.start_hour, params.end_hour):
            return False

    if rule.last_executed_at is None:
        return True
    return now - ensure_utc(rule.last_executed_at) >= timedelta(minutes=params.interval_minutes)


def _match_manual(trigger: ManualTrigger, rule: AutomationRule, context: AutomationContext) -> bool:
    if context.trigger.type != TriggerType.MANUAL or context.source_id != rule.source_id:
        return False
    requested_rule = context.trigger.data.get("rule_id")
    return requested_rule is None or requested_rule == rule.id


_TRIGGER_MATCHERS: Dict[type, Callable[..., bool]] = {
    NewFeedItemsTrigger: _match_new_feed_items,
    ScheduledTrigger: _match_scheduled,
    ManualTrigger: _match_manual,
}


def trigger_matches(trigger: Any, rule: AutomationRule, context: AutomationContext) -> bool:
    matcher = _TRIGGER_MATCHERS.get(type(trigger))
    if matcher is None:
        raise ValueError(f"Unhandled trigger type: {type(trigger).__name__}")
    return matcher(trigger, rule, context)


# Condition dispatch

def _hour_in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    if start_hour == end_hour:
        return True
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    # Window wraps past midnight
    return hour >= start_hour or hour < end_hour


def _time_range_holds(condition: TimeRangeCondition, context: AutomationContext) -> bool:
    params = condition.parameters
    local = context.now.astimezone(ZoneInfo(params.timezone))
    if params.days_of_week is not None and local.weekday() not in params.days_of_week:
        return False
    return _hour_in_window(local.hour, params.start_hour, params.end_hour)


def _item_count_holds(condition: ItemCountCondition, context: AutomationContext) -> bool:
    count = len(context.new_feed_items)
    params = condition.parameters
    if count < params.min_items:
        return False
    return params.max_items is None or count <= params.max_items


def _plain_text(item: FeedItemSummary) -> str:
    text = BeautifulSoup(item.content or "", "html.parser").get_text(separator=" ")
    return f"{item.title} {text}".lower()


def _content_filter_holds(condition: ContentFilterCondition, context: AutomationContext) -> bool:
    params = condition.parameters
    keywords = [k.lower() for k in params.keywords if k.strip()]
    excluded = [k.lower() for k in params.exclude_keywords if k.strip()]

    matches = 0
    for item in context.new_feed_items:
        text = _plain_text(item)
        if any(word in text for word in excluded):
            continue
        if not keywords or any(word in text for word in keywords):
            matches += 1
    return matches >= params.min_matches


def _source_status_holds(condition: SourceStatusCondition, context: AutomationContext) -> bool:
    if context.source is None:
        return False
    return context.source.status in condition.parameters.allowed_statuses


_CONDITION_EVALUATORS: Dict[type, Callable[..., bool]] = {
    TimeRangeCondition: _time_range_holds,
    ItemCountCondition: _item_count_holds,
    ContentFilterCondition: _content_filter_holds,
    SourceStatusCondition: _source_status_holds,
}


def condition_holds(condition: Any, context: AutomationContext) -> bool:
    evaluator = _CONDITION_EVALUATORS.get(type(condition))
    if evaluator is None:
        raise ValueError(f"Unhandled condition type: {type(condition).__name__}")
    return evaluator(condition, context)
