"""Automation rule repository."""
from datetime import datetime
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.automation import AutomationRule, TriggerType
from shared.utils import get_utc_now


class AutomationRuleRepository:
    """Repository for AutomationRule persistence. Rules are never hard-deleted."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.automation_rules

    @staticmethod
    def _to_rule(document: Optional[Dict[str, Any]]) -> Optional[AutomationRule]:
        if document is None:
            return None
        return AutomationRule.model_validate(document)

    async def save(self, rule: AutomationRule) -> AutomationRule:
        """Insert a new rule."""
        await self.collection.insert_one(rule.to_document())
        return rule

    async def get(self, rule_id: str) -> Optional[AutomationRule]:
        """Get a rule by ID."""
        return self._to_rule(await self.collection.find_one({"_id": rule_id}))

    async def list_for_source(self, source_id: str, enabled_only: bool = False) -> List[AutomationRule]:
        """Rules of a source in creation order."""
        query: Dict[str, Any] = {"source_id": source_id}
        if enabled_only:
            query["enabled"] = True
        cursor = self.collection.find(query).sort("created_at", 1)
        return [self._to_rule(doc) for doc in await cursor.to_list(length=None)]

    async def list_by_trigger(self, trigger_type: TriggerType, enabled_only: bool = True) -> List[AutomationRule]:
        """Rules with a given trigger type, across sources."""
        query: Dict[str, Any] = {"trigger.type": trigger_type.value}
        if enabled_only:
            query["enabled"] = True
        cursor = self.collection.find(query).sort("created_at", 1)
        return [self._to_rule(doc) for doc in await cursor.to_list(length=None)]

    async def set_enabled(self, rule_id: str, enabled: bool) -> Optional[AutomationRule]:
        """Enable or disable a rule."""
        document = await self.collection.find_one_and_update(
            {"_id": rule_id},
            {"$set": {"enabled": enabled, "updated_at": get_utc_now()}},
            return_document=True
        )
        return self._to_rule(document)

    async def record_execution(self, rule_id: str, executed_at: datetime) -> Optional[AutomationRule]:
        """Increment the execution counter and stamp the execution time."""
        document = await self.collection.find_one_and_update(
            {"_id": rule_id},
            {
                "$inc": {"execution_count": 1},
                "$set": {"last_executed_at": executed_at, "updated_at": executed_at}
            },
            return_document=True
        )
        return self._to_rule(document)
