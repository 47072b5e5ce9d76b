"""API endpoint tests."""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from api.admin import IdempotencyStore, build_facades
from api.main import app
from api.models.article import ArticleStatus
from database.repositories.article_repo import ArticleRepository
from shared.result import ErrorCode

INGEST_INPUT = {
    "sourceId": "src_tech",
    "items": [{"guid": "guid-1", "url": "https://example.com/a", "title": "First"}]
}


@pytest_asyncio.fixture
async def client(container, fake_redis):
    """HTTP client against the app with facades over the fake database."""
    app.state.facades = build_facades(container, IdempotencyStore(fake_redis))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestInfoEndpoints:
    """Tests for / and /health."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_root_lists_modules(self, client):
        response = await client.get("/")

        assert response.json()["modules"] == ["sources", "automation", "content", "publishing"]


class TestUseCasesEndpoint:
    """Tests for GET /admin/{module}/use-cases."""

    @pytest.mark.asyncio
    async def test_lists_use_cases(self, client):
        response = await client.get("/admin/sources/use-cases")

        assert response.status_code == 200
        names = [uc["name"] for uc in response.json()["use_cases"]]
        assert names == ["IngestFeedItems", "ListPendingFeedItems"]

    @pytest.mark.asyncio
    async def test_unknown_module(self, client):
        response = await client.get("/admin/billing/use-cases")

        assert response.status_code == 404
        assert response.json()["detail"] == "Module billing not found"


class TestValidateEndpoint:
    """Tests for POST /admin/{module}/{use_case}/validate."""

    @pytest.mark.asyncio
    async def test_valid_payload(self, client):
        response = await client.post("/admin/sources/IngestFeedItems/validate", json=INGEST_INPUT)

        assert response.status_code == 200
        assert response.json()["is_valid"] is True

    @pytest.mark.asyncio
    async def test_invalid_payload_is_still_200(self, client):
        response = await client.post("/admin/sources/IngestFeedItems/validate", json={"items": []})

        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is False
        assert {error["field"] for error in body["errors"]} == {"sourceId", "items"}


class TestExecuteEndpoint:
    """Tests for POST /admin/{module}/{use_case}/execute."""

    @pytest.mark.asyncio
    async def test_execute_success(self, client, fake_db):
        response = await client.post(
            "/admin/sources/IngestFeedItems/execute",
            json={"input": INGEST_INPUT, "options": {"userId": "ops-1"}}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["inserted"] == 1
        assert len(fake_db.feed_items.docs) == 1

    @pytest.mark.asyncio
    async def test_execute_dry_run(self, client, fake_db):
        response = await client.post(
            "/admin/sources/IngestFeedItems/execute",
            json={"input": INGEST_INPUT, "options": {"dryRun": True}}
        )

        assert response.status_code == 200
        assert response.json()["dry_run"] is True
        assert fake_db.feed_items.docs == {}

    @pytest.mark.asyncio
    async def test_validation_error_is_422(self, client):
        response = await client.post("/admin/sources/IngestFeedItems/execute", json={"input": {}})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_unknown_use_case_is_404(self, client):
        response = await client.post("/admin/content/Teleport/execute", json={})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == ErrorCode.UNKNOWN_USE_CASE

    @pytest.mark.asyncio
    async def test_invalid_transition_is_400(self, client, fake_db):
        article = await ArticleRepository(fake_db).create_article(
            source_id="src_tech", title="Done", content="<p>Done</p>", status=ArticleStatus.PUBLISHED
        )

        response = await client.post(
            "/admin/content/AdvanceArticle/execute",
            json={"input": {"articleId": article["_id"], "stage": "approve"}}
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == ErrorCode.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_idempotent_replay_over_http(self, client):
        body = {"input": INGEST_INPUT, "options": {"idempotencyKey": "batch-42"}}

        first = await client.post("/admin/sources/IngestFeedItems/execute", json=body)
        second = await client.post("/admin/sources/IngestFeedItems/execute", json=body)

        assert first.json()["replayed"] is False
        assert second.json()["replayed"] is True
        assert second.json()["data"] == first.json()["data"]
