"""Admin facade contract tests."""
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from api.admin import IdempotencyStore, build_facades
from api.models.article import ArticleStatus
from api.schemas.requests import ExecutionOptions
from database.repositories.article_repo import ArticleRepository
from shared.result import ErrorCode

INGEST_INPUT = {
    "sourceId": "src_tech",
    "sourceName": "Tech News",
    "sourceConfiguration": {"auto_generate": True},
    "items": [
        {"guid": "guid-1", "url": "https://example.com/a", "title": "First", "content": "One"},
        {"guid": "guid-2", "url": "https://example.com/b", "title": "Second", "content": "Two"},
    ]
}

PUBLISH_TARGET = {
    "platform": "wordpress",
    "siteId": "blog",
    "siteUrl": "https://blog.example.com",
    "configuration": {"username": "editor", "password": "app-password"}
}


@pytest.fixture
def facades(container, fake_redis):
    return build_facades(container, IdempotencyStore(fake_redis))


@pytest_asyncio.fixture
async def ready_article(fake_db):
    return await ArticleRepository(fake_db).create_article(
        source_id="src_tech",
        title="Ready",
        content="<p>Ready to go</p>",
        status=ArticleStatus.READY_TO_PUBLISH
    )


def publish_input(article_id, **extra):
    payload = {
        "articleId": article_id,
        "target": PUBLISH_TARGET,
        "content": {"title": "Ready", "content": "<p>Ready to go</p>"}
    }
    payload.update(extra)
    return payload


class TestDiscovery:
    """Tests for listing use cases."""

    def test_every_module_is_registered(self, facades):
        assert set(facades) == {"sources", "automation", "content", "publishing"}

    def test_use_case_descriptions(self, facades):
        described = {uc["name"]: uc for uc in facades["publishing"].list_use_cases()}

        assert "PublishArticle" in described
        assert described["PublishArticle"]["risk_level"] == "high"
        assert described["PublishArticle"]["idempotent"] is True
        assert "properties" in described["PublishArticle"]["input_schema"]


class TestValidate:
    """Tests for validate()."""

    def test_valid_input_is_normalized(self, facades):
        validation = facades["sources"].validate("IngestFeedItems", INGEST_INPUT)

        assert validation.is_valid
        assert validation.normalized_input["source_id"] == "src_tech"
        assert validation.normalized_input["source_type"] == "rss"

    def test_field_errors(self, facades):
        validation = facades["sources"].validate("IngestFeedItems", {"sourceId": "src_tech", "items": []})

        assert not validation.is_valid
        assert [error["field"] for error in validation.errors] == ["items"]

    def test_unknown_use_case(self, facades):
        validation = facades["sources"].validate("DeleteEverything", {})

        assert not validation.is_valid
        assert validation.errors[0]["field"] == "use_case"

    def test_ingest_warnings(self, facades):
        payload = dict(INGEST_INPUT, items=INGEST_INPUT["items"] + [INGEST_INPUT["items"][0], {"title": "Anonymous"}])

        validation = facades["sources"].validate("IngestFeedItems", payload)

        assert validation.is_valid
        assert len(validation.warnings) == 2

    def test_publish_warnings(self, facades):
        payload = publish_input(
            "art_1",
            target={"platform": "wordpress", "siteId": "blog"},
            scheduledAt="2020-01-01T00:00:00Z",
            allowDuplicate=True
        )

        validation = facades["publishing"].validate("PublishArticle", payload)

        assert validation.is_valid
        assert len(validation.warnings) == 3


class TestExecute:
    """Tests for execute()."""

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_the_handler(self, facades, container):
        container.ingestion.ingest_and_announce = AsyncMock()

        result = await facades["sources"].execute("IngestFeedItems", {"sourceId": ""})

        assert not result.success
        assert result.error["code"] == ErrorCode.VALIDATION_ERROR
        assert result.error["details"]["errors"]
        container.ingestion.ingest_and_announce.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_use_case(self, facades):
        result = await facades["content"].execute("Teleport", {})

        assert result.error["code"] == ErrorCode.UNKNOWN_USE_CASE
        assert result.module == "content"

    @pytest.mark.asyncio
    async def test_success_carries_request_metadata(self, facades):
        options = ExecutionOptions(request_id="req_fixed", user_id="ops-1")

        result = await facades["sources"].execute("IngestFeedItems", INGEST_INPUT, options)

        assert result.success
        assert result.request_id == "req_fixed"
        assert result.use_case == "IngestFeedItems"
        assert result.data["inserted"] == 2
        assert result.dry_run is False

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_execution_failed(self, facades, container):
        container.ingestion.ingest_and_announce = AsyncMock(side_effect=RuntimeError("mongo down"))

        result = await facades["sources"].execute("IngestFeedItems", INGEST_INPUT)

        assert not result.success
        assert result.error["code"] == ErrorCode.EXECUTION_FAILED
        assert "mongo down" in result.error["message"]

    @pytest.mark.asyncio
    async def test_domain_failure_is_reported(self, facades):
        result = await facades["content"].execute("GetArticle", {"articleId": "art_missing"})

        assert result.error["code"] == ErrorCode.NOT_FOUND


class TestDryRun:
    """Dry runs go through the same handlers without touching real state."""

    @pytest.mark.asyncio
    async def test_dry_run_ingest_writes_nothing(self, facades, fake_db, text_generator):
        await facades["automation"].execute("CreateAutomationRule", {
            "sourceId": "src_tech",
            "name": "Auto",
            "trigger": {"type": "new_feed_items"},
            "actions": [{"type": "generate_articles"}]
        })
        writes_before = fake_db.total_writes

        result = await facades["sources"].execute("IngestFeedItems", INGEST_INPUT, ExecutionOptions(dry_run=True))

        assert result.success
        assert result.dry_run is True
        assert result.data["inserted"] == 2
        assert fake_db.total_writes == writes_before
        assert fake_db.feed_items.docs == {}
        assert text_generator.calls == []

    @pytest.mark.asyncio
    async def test_dry_run_reports_real_duplicates(self, facades):
        await facades["sources"].execute("IngestFeedItems", INGEST_INPUT)

        result = await facades["sources"].execute("IngestFeedItems", INGEST_INPUT, ExecutionOptions(dry_run=True))

        assert result.data["inserted"] == 0
        assert result.data["skipped"] == 2

    @pytest.mark.asyncio
    async def test_dry_run_publish_calls_no_platform(self, facades, fake_db, ready_article, publishing_client):
        writes_before = fake_db.total_writes

        result = await facades["publishing"].execute(
            "PublishArticle", publish_input(ready_article["_id"]), ExecutionOptions(dry_run=True)
        )

        assert result.success
        assert result.data["status"] == "completed"
        assert result.data["external_id"].startswith("dryrun_post_")
        assert publishing_client.calls == []
        assert fake_db.total_writes == writes_before
        assert fake_db.articles.docs[ready_article["_id"]]["status"] == ArticleStatus.READY_TO_PUBLISH.value

    @pytest.mark.asyncio
    async def test_dry_run_ignores_idempotency_store(self, facades, fake_redis):
        options = ExecutionOptions(dry_run=True, idempotency_key="key-1")

        await facades["sources"].execute("IngestFeedItems", INGEST_INPUT, options)

        assert fake_redis.store == {}


class TestIdempotency:
    """Tests for idempotent replays."""

    @pytest.mark.asyncio
    async def test_replay_returns_stored_result(self, facades, ready_article, publishing_client):
        options = ExecutionOptions(idempotency_key="publish-once")

        first = await facades["publishing"].execute("PublishArticle", publish_input(ready_article["_id"]), options)
        second = await facades["publishing"].execute("PublishArticle", publish_input(ready_article["_id"]), options)

        assert first.success
        assert second.replayed is True
        assert second.data["publication_id"] == first.data["publication_id"]
        assert len(publishing_client.calls) == 1

    @pytest.mark.asyncio
    async def test_key_in_progress(self, facades, fake_redis):
        store = IdempotencyStore(fake_redis)
        await store.claim("sources.IngestFeedItems", "busy-key")

        result = await facades["sources"].execute(
            "IngestFeedItems", INGEST_INPUT, ExecutionOptions(idempotency_key="busy-key")
        )

        assert result.error["code"] == ErrorCode.IDEMPOTENCY_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_unexpected_failure_releases_the_key(self, facades, container, fake_redis):
        container.ingestion.ingest_and_announce = AsyncMock(side_effect=RuntimeError("mongo down"))
        options = ExecutionOptions(idempotency_key="retry-me")

        await facades["sources"].execute("IngestFeedItems", INGEST_INPUT, options)

        assert fake_redis.store == {}

    @pytest.mark.asyncio
    async def test_domain_failure_is_replayed(self, facades, fake_redis):
        options = ExecutionOptions(idempotency_key="lookup-1")

        await facades["content"].execute("GetArticle", {"articleId": "art_missing"}, options)
        replay = await facades["content"].execute("GetArticle", {"articleId": "art_missing"}, options)

        assert replay.replayed is True
        assert replay.error["code"] == ErrorCode.NOT_FOUND
        [key] = fake_redis.store
        assert fake_redis.record(key)["state"] == "completed"


class TestModuleUseCases:
    """End-to-end runs of each module's use cases."""

    @pytest.mark.asyncio
    async def test_rules_and_manual_trigger(self, facades, container):
        await facades["sources"].execute("IngestFeedItems", dict(INGEST_INPUT, sourceConfiguration={"auto_generate": False}))
        created = await facades["automation"].execute("CreateAutomationRule", {
            "sourceId": "src_tech",
            "name": "On demand",
            "trigger": {"type": "manual"},
            "actions": [{"type": "generate_articles"}]
        })

        listed = await facades["automation"].execute("GetAutomationRules", {"sourceId": "src_tech"})
        triggered = await facades["automation"].execute(
            "TriggerAutomation",
            {"sourceId": "src_tech", "ruleId": created.data["id"], "maxItems": 1},
            ExecutionOptions(user_id="ops-1")
        )

        assert listed.data["count"] == 1
        assert triggered.success
        assert triggered.data["rules_triggered"] == 1
        assert len(container.db.articles.docs) == 1

    @pytest.mark.asyncio
    async def test_disable_rule(self, facades):
        created = await facades["automation"].execute("CreateAutomationRule", {
            "sourceId": "src_tech",
            "name": "Auto",
            "trigger": {"type": "new_feed_items"},
            "actions": [{"type": "generate_articles"}]
        })

        result = await facades["automation"].execute(
            "SetAutomationRuleEnabled", {"ruleId": created.data["id"], "enabled": False}
        )

        assert result.data["enabled"] is False

    @pytest.mark.asyncio
    async def test_generate_and_approve(self, facades, container):
        ingested = await facades["sources"].execute("IngestFeedItems", dict(INGEST_INPUT, sourceConfiguration={"auto_generate": False}))
        pending = await facades["sources"].execute("ListPendingFeedItems", {"sourceId": "src_tech"})
        feed_item_id = ingested.data["feed_item_ids"][0]

        generated = await facades["content"].execute("GenerateArticle", {"feedItemId": feed_item_id})
        approved = await facades["content"].execute(
            "AdvanceArticle", {"articleId": generated.data["id"], "stage": "approve"}
        )
        again = await facades["content"].execute(
            "AdvanceArticle", {"articleId": generated.data["id"], "stage": "request_image"}
        )

        assert pending.data["count"] == 2
        assert generated.data["status"] == "generated"
        assert approved.data["status"] == "ready_to_publish"
        assert again.error["code"] == ErrorCode.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_fail_article_with_reason(self, facades, ready_article):
        result = await facades["content"].execute(
            "AdvanceArticle", {"articleId": ready_article["_id"], "stage": "fail", "reason": "Off topic"}
        )

        assert result.data["status"] == "failed"
        assert result.data["error_message"] == "Off topic"

    @pytest.mark.asyncio
    async def test_publish_and_query(self, facades, ready_article):
        published = await facades["publishing"].execute("PublishArticle", publish_input(ready_article["_id"]))
        by_article = await facades["publishing"].execute("GetPublications", {"articleId": ready_article["_id"]})
        by_id = await facades["publishing"].execute(
            "GetPublications", {"publicationId": published.data["publication_id"]}
        )

        assert published.data["status"] == "completed"
        assert by_article.data["count"] == 1
        assert by_id.data["publications"][0]["external_url"] == "https://blog.example.com/?p=1"

    @pytest.mark.asyncio
    async def test_sweeps(self, facades):
        dispatched = await facades["publishing"].execute("DispatchScheduledPublications", {})
        retried = await facades["publishing"].execute("RetryFailedPublications", {"limit": 5})

        assert dispatched.data == {"attempted": 0, "succeeded": 0, "failed": 0, "results": []}
        assert retried.data["attempted"] == 0
