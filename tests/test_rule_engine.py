"""Automation rule and rule engine tests."""
from datetime import timedelta

import pytest

from api.models.automation import (
    AutomationContext,
    AutomationRule,
    TriggerDescriptor,
    TriggerType,
)
from api.models.feed_item import FeedItemSummary
from api.models.source import SourceSnapshot
from api.services.rule_engine import RuleEngine, evaluate_rules
from shared.result import ErrorCode

GENERATE = [{"type": "generate_articles", "parameters": {"max_items": 2}}]


def make_rule(trigger=None, conditions=None, actions=None, enabled=True, source_id="src_1", name="Rule"):
    result = AutomationRule.create(
        source_id,
        name,
        trigger or {"type": "new_feed_items"},
        conditions,
        actions if actions is not None else GENERATE,
        enabled
    )
    assert result.success, result.error
    return result.value


def make_context(now, trigger_type=TriggerType.NEW_FEED_ITEMS, items=None, source_id="src_1", status="active", data=None):
    if items is None:
        items = [FeedItemSummary(id="fi_1", title="Python news", content="<p>All about snakes</p>")]
    return AutomationContext(
        source_id=source_id,
        trigger=TriggerDescriptor(type=trigger_type, timestamp=now, data=data or {}),
        new_feed_items=items,
        source=SourceSnapshot(id=source_id, status=status)
    )


class TestRuleFactory:
    """Tests for AutomationRule.create."""

    @pytest.mark.parametrize("source_id,name,trigger,actions,message", [
        ("", "Rule", {"type": "manual"}, GENERATE, "Source ID is required"),
        ("src_1", "  ", {"type": "manual"}, GENERATE, "Rule name is required"),
        ("src_1", "Rule", None, GENERATE, "Trigger is required"),
        ("src_1", "Rule", {"type": "manual"}, [], "At least one action is required"),
    ])
    def test_rejects_missing_parts(self, source_id, name, trigger, actions, message):
        result = AutomationRule.create(source_id, name, trigger, None, actions)

        assert not result.success
        assert result.error.code == ErrorCode.VALIDATION_ERROR
        assert result.error.message == message

    def test_rejects_unknown_variant(self):
        result = AutomationRule.create("src_1", "Rule", {"type": "manual"}, None, [{"type": "launch_rocket"}])

        assert not result.success
        assert result.error.message == "Invalid automation rule"
        assert result.error.details["errors"]

    def test_rejects_bad_timezone(self):
        conditions = [{"type": "time_range", "parameters": {"start_hour": 9, "end_hour": 17, "timezone": "Mars/Olympus"}}]
        result = AutomationRule.create("src_1", "Rule", {"type": "manual"}, conditions, GENERATE)

        assert not result.success

    def test_enabled_rule_needs_actions(self, fixed_now):
        with pytest.raises(ValueError):
            AutomationRule(
                id="rule_1", source_id="src_1", name="Empty", enabled=True,
                trigger={"type": "manual"}, actions=[], created_at=fixed_now, updated_at=fixed_now
            )

    def test_record_execution_returns_new_snapshot(self, fixed_now):
        rule = make_rule()
        executed = rule.record_execution(fixed_now)

        assert rule.execution_count == 0
        assert executed.execution_count == 1
        assert executed.last_executed_at == fixed_now


class TestTriggers:
    """Tests for trigger matching."""

    def test_new_feed_items_fires_with_items(self, fixed_now):
        assert make_rule().should_execute(make_context(fixed_now))

    def test_new_feed_items_needs_items(self, fixed_now):
        assert not make_rule().should_execute(make_context(fixed_now, items=[]))

    def test_other_source_does_not_match(self, fixed_now):
        assert not make_rule().should_execute(make_context(fixed_now, source_id="src_2"))

    def test_disabled_rule_never_fires(self, fixed_now):
        rule = make_rule(enabled=False)
        assert not rule.should_execute(make_context(fixed_now))

    def test_trigger_type_must_match(self, fixed_now):
        rule = make_rule(trigger={"type": "manual"})
        assert not rule.should_execute(make_context(fixed_now))

    def test_scheduled_fires_when_never_executed(self, fixed_now):
        rule = make_rule(trigger={"type": "scheduled", "parameters": {"interval_minutes": 60}})
        assert rule.should_execute(make_context(fixed_now, TriggerType.SCHEDULED))

    def test_scheduled_waits_for_interval(self, fixed_now):
        rule = make_rule(trigger={"type": "scheduled", "parameters": {"interval_minutes": 60}})

        recent = rule.record_execution(fixed_now - timedelta(minutes=30))
        old = rule.record_execution(fixed_now - timedelta(minutes=61))

        assert not recent.should_execute(make_context(fixed_now, TriggerType.SCHEDULED))
        assert old.should_execute(make_context(fixed_now, TriggerType.SCHEDULED))

    def test_scheduled_hour_window(self, fixed_now):
        rule = make_rule(trigger={"type": "scheduled", "parameters": {"start_hour": 9, "end_hour": 17}})

        assert rule.should_execute(make_context(fixed_now, TriggerType.SCHEDULED))
        assert not rule.should_execute(make_context(fixed_now.replace(hour=20), TriggerType.SCHEDULED))

    def test_manual_can_target_one_rule(self, fixed_now):
        first = make_rule(trigger={"type": "manual"}, name="First")
        second = make_rule(trigger={"type": "manual"}, name="Second")
        context = make_context(fixed_now, TriggerType.MANUAL, data={"rule_id": first.id})

        assert first.should_execute(context)
        assert not second.should_execute(context)

    def test_manual_without_rule_id_matches_all(self, fixed_now):
        rule = make_rule(trigger={"type": "manual"})
        assert rule.should_execute(make_context(fixed_now, TriggerType.MANUAL))


class TestConditions:
    """Tests for condition evaluation; fixed_now is Monday 10:30 UTC."""

    def test_time_range(self, fixed_now):
        inside = make_rule(conditions=[{"type": "time_range", "parameters": {"start_hour": 9, "end_hour": 12}}])
        outside = make_rule(conditions=[{"type": "time_range", "parameters": {"start_hour": 12, "end_hour": 18}}])

        assert inside.should_execute(make_context(fixed_now))
        assert not outside.should_execute(make_context(fixed_now))

    def test_time_range_wraps_midnight(self, fixed_now):
        rule = make_rule(conditions=[{"type": "time_range", "parameters": {"start_hour": 22, "end_hour": 6}}])

        assert rule.should_execute(make_context(fixed_now.replace(hour=23)))
        assert rule.should_execute(make_context(fixed_now.replace(hour=2)))
        assert not rule.should_execute(make_context(fixed_now))

    def test_time_range_days_and_timezone(self, fixed_now):
        weekend = make_rule(conditions=[{
            "type": "time_range",
            "parameters": {"start_hour": 0, "end_hour": 0, "days_of_week": [5, 6]}
        }])
        tokyo_evening = make_rule(conditions=[{
            "type": "time_range",
            "parameters": {"start_hour": 18, "end_hour": 22, "timezone": "Asia/Tokyo"}
        }])

        assert not weekend.should_execute(make_context(fixed_now))
        # 10:30 UTC is 19:30 in Tokyo
        assert tokyo_evening.should_execute(make_context(fixed_now))

    def test_item_count(self, fixed_now):
        items = [FeedItemSummary(id=f"fi_{i}", title="t") for i in range(3)]
        enough = make_rule(conditions=[{"type": "item_count", "parameters": {"min_items": 2}}])
        too_many = make_rule(conditions=[{"type": "item_count", "parameters": {"min_items": 1, "max_items": 2}}])

        assert enough.should_execute(make_context(fixed_now, items=items))
        assert not too_many.should_execute(make_context(fixed_now, items=items))

    def test_content_filter_matches_stripped_html(self, fixed_now):
        rule = make_rule(conditions=[{"type": "content_filter", "parameters": {"keywords": ["SNAKES"]}}])
        assert rule.should_execute(make_context(fixed_now))

    def test_content_filter_exclusions(self, fixed_now):
        rule = make_rule(conditions=[{
            "type": "content_filter",
            "parameters": {"keywords": ["python"], "exclude_keywords": ["snakes"]}
        }])
        assert not rule.should_execute(make_context(fixed_now))

    def test_source_status(self, fixed_now):
        rule = make_rule(conditions=[{"type": "source_status"}])

        assert rule.should_execute(make_context(fixed_now))
        assert not rule.should_execute(make_context(fixed_now, status="paused"))

    def test_all_conditions_must_hold(self, fixed_now):
        rule = make_rule(conditions=[
            {"type": "source_status"},
            {"type": "item_count", "parameters": {"min_items": 5}},
        ])
        assert not rule.should_execute(make_context(fixed_now))


class ExplodingRule:
    """Stands in for a rule whose evaluation raises."""
    id = "rule_bad"
    name = "Bad"
    actions = []

    def rejection_reason(self, context):
        raise RuntimeError("corrupt parameters")


class TestEvaluateRules:
    """Tests for pure rule evaluation."""

    def test_collects_triggered_rules_with_actions(self, fixed_now):
        firing = make_rule(name="Fires")
        silent = make_rule(trigger={"type": "manual"}, name="Silent")

        report = evaluate_rules([firing, silent], make_context(fixed_now))

        assert [t.rule.id for t in report.triggered] == [firing.id]
        assert report.triggered[0].actions[0].parameters.max_items == 2
        assert len(report.evaluations) == 2

    def test_failing_rule_is_isolated(self, fixed_now):
        good = make_rule()

        report = evaluate_rules([ExplodingRule(), good], make_context(fixed_now))

        assert [t.rule.id for t in report.triggered] == [good.id]
        assert report.evaluations[0].error == "corrupt parameters"
        assert report.evaluations[0].should_execute is False

    def test_evaluation_is_repeatable(self, fixed_now):
        rule = make_rule()
        context = make_context(fixed_now)

        first = evaluate_rules([rule], context).to_dict()
        second = evaluate_rules([rule], context).to_dict()

        assert first == second
        assert rule.execution_count == 0

    def test_evaluations_say_why_a_rule_did_not_fire(self, fixed_now):
        firing = make_rule(name="Fires")
        disabled = make_rule(enabled=False, name="Off")
        manual = make_rule(trigger={"type": "manual"}, name="Manual")
        too_few = make_rule(conditions=[{"type": "item_count", "parameters": {"min_items": 3}}], name="Batch")

        report = evaluate_rules([firing, disabled, manual, too_few], make_context(fixed_now))

        assert [e.reason for e in report.evaluations] == [
            None,
            "rule is disabled",
            "trigger manual did not match",
            "condition item_count not met",
        ]
        assert report.to_dict()["evaluations"][3]["reason"] == "condition item_count not met"

    def test_failing_rule_reason(self, fixed_now):
        report = evaluate_rules([ExplodingRule()], make_context(fixed_now))

        assert report.evaluations[0].reason == "evaluation failed"


class TestRuleEngine:
    """Tests for the storage-backed engine."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, fake_db):
        engine = RuleEngine(fake_db)

        created = await engine.create_rule("src_1", "Auto", {"type": "new_feed_items"}, actions=GENERATE)
        rules = await engine.get_rules("src_1")

        assert created.success
        assert [rule.id for rule in rules] == [created.value.id]
        assert fake_db.automation_rules.docs[created.value.id]["trigger"]["type"] == "new_feed_items"

    @pytest.mark.asyncio
    async def test_create_failure_is_not_stored(self, fake_db):
        engine = RuleEngine(fake_db)

        result = await engine.create_rule("src_1", "", {"type": "manual"}, actions=GENERATE)

        assert not result.success
        assert fake_db.automation_rules.docs == {}

    @pytest.mark.asyncio
    async def test_set_enabled(self, fake_db):
        engine = RuleEngine(fake_db)
        created = await engine.create_rule("src_1", "Auto", {"type": "manual"}, actions=GENERATE)

        result = await engine.set_rule_enabled(created.value.id, False)

        assert result.success
        assert result.value.enabled is False
        assert await engine.get_rules("src_1", enabled_only=True) == []

    @pytest.mark.asyncio
    async def test_set_enabled_unknown_rule(self, fake_db):
        result = await RuleEngine(fake_db).set_rule_enabled("rule_missing", True)

        assert result.error.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_record_execution_persists(self, fake_db, fixed_now):
        engine = RuleEngine(fake_db)
        created = await engine.create_rule("src_1", "Auto", {"type": "manual"}, actions=GENERATE)

        updated = await engine.record_execution(created.value, fixed_now)

        assert updated.execution_count == 1
        assert fake_db.automation_rules.docs[created.value.id]["last_executed_at"] == fixed_now
