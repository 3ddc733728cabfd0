"""POST /ingest tests — payload shapes, bearer token, size cap and store failures."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from puipr.config import get_settings
from puipr.ingest import service as ingest_service

ROW = {"user_id": 1, "user": "alice", "ip_address": "10.0.0.5", "date": 1000}


@pytest.fixture
def ingest_token(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setenv("PUIPR_INGEST_TOKEN", "s3cret")
    get_settings.cache_clear()
    return "s3cret"


async def _user_count(client: AsyncClient) -> int:
    response = await client.get("/api/v1/users")
    return len(response.json())


class TestPayloadShapes:
    async def test_bare_array(self, client: AsyncClient):
        response = await client.post("/ingest", json=[ROW, {**ROW, "ip_address": "10.0.0.6"}])
        assert response.status_code == 200
        assert response.json() == {"ingested": 2}

    async def test_data_wrapper(self, client: AsyncClient):
        response = await client.post("/ingest", json={"data": [ROW]})
        assert response.status_code == 200
        assert response.json() == {"ingested": 1}

    @pytest.mark.parametrize("payload", [[], {"data": []}, {}])
    async def test_empty_batch(self, client: AsyncClient, payload):
        response = await client.post("/ingest", json=payload)
        assert response.status_code == 200
        assert response.json() == {"ingested": 0}
        assert await _user_count(client) == 0

    async def test_invalid_json(self, client: AsyncClient):
        response = await client.post(
            "/ingest", content=b"{definitely not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json() == {"detail": "bad json"}

    @pytest.mark.parametrize("payload", [42, "alice", {"data": "alice"}])
    async def test_wrong_top_level_shape(self, client: AsyncClient, payload):
        response = await client.post("/ingest", json=payload)
        assert response.status_code == 400
        assert await _user_count(client) == 0

    async def test_invalid_item_rejects_batch(self, client: AsyncClient):
        response = await client.post("/ingest", json=[ROW, {"user": "no-id"}])
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"
        assert await _user_count(client) == 0

    async def test_ingested_rows_are_queryable(self, client: AsyncClient):
        await client.post("/ingest", json=[ROW])
        response = await client.get("/api/v1/users/1/ips")
        assert [row["ip"] for row in response.json()["ips"]] == ["10.0.0.5"]


class TestBearerToken:
    async def test_open_when_unconfigured(self, client: AsyncClient):
        response = await client.post("/ingest", json=[ROW])
        assert response.status_code == 200

    async def test_missing_token(self, client: AsyncClient, ingest_token: str):
        response = await client.post("/ingest", json=[ROW])
        assert response.status_code == 401
        assert response.json() == {"detail": "unauthorized"}
        assert await _user_count(client) == 0

    async def test_wrong_token(self, client: AsyncClient, ingest_token: str):
        response = await client.post("/ingest", json=[ROW], headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert ingest_token not in response.text
        assert await _user_count(client) == 0

    async def test_valid_token(self, client: AsyncClient, ingest_token: str):
        response = await client.post(
            "/ingest", json=[ROW], headers={"Authorization": f"Bearer {ingest_token}"}
        )
        assert response.status_code == 200
        assert response.json() == {"ingested": 1}


class TestSizeCap:
    async def test_oversized_body_rejected(self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PUIPR_MAX_INGEST_BYTES", "64")
        get_settings.cache_clear()

        response = await client.post("/ingest", json=[ROW, ROW, ROW])
        assert response.status_code == 413
        assert await _user_count(client) == 0


class TestStoreFailure:
    async def test_failing_item_returns_500_and_stores_nothing(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ):
        merge_item = ingest_service._merge_item

        async def failing_merge(session, insert, item, seen_at):
            if item.user_id == 2:
                raise OperationalError("INSERT INTO plex_users", {}, Exception("disk I/O error"))
            await merge_item(session, insert, item, seen_at)

        monkeypatch.setattr(ingest_service, "_merge_item", failing_merge)

        response = await client.post("/ingest", json=[ROW, {**ROW, "user_id": 2, "user": "bob"}])

        assert response.status_code == 500
        assert response.json()["detail"].startswith("ingest failed at item 1: ")
        assert "disk I/O error" in response.json()["detail"]
        assert await _user_count(client) == 0
