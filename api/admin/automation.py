"""Automation module: rule management and manual runs."""
from api.admin.base import AdminFacade, UseCase
from api.models.automation import TriggerType
from api.schemas.requests import (
    CreateAutomationRuleInput,
    ExecutionOptions,
    GetAutomationRulesInput,
    SetAutomationRuleEnabledInput,
    TriggerAutomationInput,
)
from api.services.automation import build_context_from_storage
from shared.result import Result
from shared.utils import get_utc_now


async def _create_rule(container, request: CreateAutomationRuleInput, options: ExecutionOptions) -> Result:
    result = await container.rule_engine.create_rule(
        source_id=request.source_id,
        name=request.name,
        trigger=request.trigger,
        conditions=request.conditions,
        actions=request.actions,
        enabled=request.is_enabled
    )
    if not result.success:
        return result
    return Result.ok(result.value.model_dump(mode="json"))


async def _set_rule_enabled(container, request: SetAutomationRuleEnabledInput, options: ExecutionOptions) -> Result:
    result = await container.rule_engine.set_rule_enabled(request.rule_id, request.enabled)
    if not result.success:
        return result
    return Result.ok(result.value.model_dump(mode="json"))


async def _get_rules(container, request: GetAutomationRulesInput, options: ExecutionOptions) -> Result:
    rules = await container.rule_engine.get_rules(request.source_id, request.enabled_only)
    return Result.ok({
        "source_id": request.source_id,
        "count": len(rules),
        "rules": [rule.model_dump(mode="json") for rule in rules]
    })


async def _trigger_automation(container, request: TriggerAutomationInput, options: ExecutionOptions) -> Result:
    context = await build_context_from_storage(
        container.db,
        request.source_id,
        TriggerType.MANUAL,
        get_utc_now(),
        data={"rule_id": request.rule_id, "requested_by": options.user_id},
        limit=request.max_items
    )
    report = await container.automation.run(context)
    return Result.ok(report.to_dict())


class AutomationFacade(AdminFacade):
    module = "automation"

    def register_use_cases(self):
        self.register(UseCase(
            name="CreateAutomationRule",
            description="Create a trigger/conditions/actions rule for a source",
            input_model=CreateAutomationRuleInput,
            handler=_create_rule,
            side_effects=["writes automation_rules"]
        ))
        self.register(UseCase(
            name="SetAutomationRuleEnabled",
            description="Enable or disable a rule",
            input_model=SetAutomationRuleEnabledInput,
            handler=_set_rule_enabled,
            side_effects=["writes automation_rules"],
            idempotent=True
        ))
        self.register(UseCase(
            name="GetAutomationRules",
            description="Rules configured for a source",
            input_model=GetAutomationRulesInput,
            handler=_get_rules,
            idempotent=True
        ))
        self.register(UseCase(
            name="TriggerAutomation",
            description="Run a source's manual rules over its pending feed items",
            input_model=TriggerAutomationInput,
            handler=_trigger_automation,
            side_effects=["calls text generation", "writes articles", "writes feed_items", "writes automation_rules"],
            risk_level="high"
        ))
