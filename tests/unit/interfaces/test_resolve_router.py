"""Tests for the resolve HTTP endpoints."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from embedresolver.application.use_cases import ResolveResponse
from embedresolver.domain.entities import ResolutionRequest, ResolutionResult
from embedresolver.infrastructure.config import AppConfig
from embedresolver.infrastructure.resolver import encode_base64url
from embedresolver.interfaces.app import create_app

EMBED_URL = "https://host.example/embed/abc"


@pytest.fixture()
def app() -> FastAPI:
    return create_app(AppConfig(api_rate_limit_rpm=0))


@pytest.fixture()
def resolve_uc(ok_result: ResolutionResult) -> AsyncMock:
    uc = AsyncMock()
    uc.execute = AsyncMock(return_value=ResolveResponse(result=ok_result))
    uc.resolve_candidates = AsyncMock(return_value=ResolveResponse(result=ok_result))
    return uc


@pytest.fixture()
def client(app: FastAPI, resolve_uc: AsyncMock) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        # Replace the use case wired by the lifespan
        app.state.resolve_uc = resolve_uc
        yield test_client


def _request(uc: AsyncMock) -> ResolutionRequest:
    return uc.execute.call_args.args[0]


# ---------------------------------------------------------------------------
# GET /resolve
# ---------------------------------------------------------------------------


class TestResolveEndpoint:
    def test_missing_target(self, client: TestClient, resolve_uc: AsyncMock) -> None:
        resp = client.get("/resolve")

        assert resp.status_code == 200
        assert resp.json() == {
            "ok": False,
            "urls": [],
            "message": "missing url or u64 parameter",
        }
        resolve_uc.execute.assert_not_awaited()

    def test_raw_url(self, client: TestClient, resolve_uc: AsyncMock) -> None:
        resp = client.get("/resolve", params={"url": EMBED_URL})

        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["urls"][0]["type"] == "hls"
        assert _request(resolve_uc).target_url == EMBED_URL

    def test_u64_decoded(self, client: TestClient, resolve_uc: AsyncMock) -> None:
        client.get("/resolve", params={"u64": encode_base64url(EMBED_URL)})

        assert _request(resolve_uc).target_url == EMBED_URL

    def test_u64_wins_over_url(
        self, client: TestClient, resolve_uc: AsyncMock
    ) -> None:
        client.get(
            "/resolve",
            params={
                "u64": encode_base64url(EMBED_URL),
                "url": "https://other.example/embed/x",
            },
        )

        assert _request(resolve_uc).target_url == EMBED_URL

    def test_referer_and_debug(
        self, client: TestClient, resolve_uc: AsyncMock
    ) -> None:
        client.get(
            "/resolve",
            params={
                "url": EMBED_URL,
                "referer": "https://site.example/",
                "debug": "1",
            },
        )

        request = _request(resolve_uc)
        assert request.referer == "https://site.example/"
        assert request.debug is True

    def test_debug_off_by_default(
        self, client: TestClient, resolve_uc: AsyncMock
    ) -> None:
        client.get("/resolve", params={"url": EMBED_URL, "debug": "0"})

        assert _request(resolve_uc).debug is False

    def test_cors_and_cache_headers(
        self, client: TestClient, resolve_uc: AsyncMock, ok_result: ResolutionResult
    ) -> None:
        resolve_uc.execute = AsyncMock(
            return_value=ResolveResponse(result=ok_result, cache_hit=True)
        )

        resp = client.get("/resolve", params={"url": EMBED_URL})

        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert resp.headers["X-Cache"] == "HIT"

    def test_failure_is_still_200(
        self, client: TestClient, resolve_uc: AsyncMock
    ) -> None:
        resolve_uc.execute = AsyncMock(
            return_value=ResolveResponse(
                result=ResolutionResult.failure("Failed to fetch: 404 Not Found")
            )
        )

        resp = client.get("/resolve", params={"url": EMBED_URL})

        assert resp.status_code == 200
        assert resp.json()["message"] == "Failed to fetch: 404 Not Found"
        assert resp.headers["X-Cache"] == "MISS"

    def test_preflight(self, client: TestClient) -> None:
        resp = client.options("/resolve")

        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "GET" in resp.headers["Access-Control-Allow-Methods"]
        assert "Content-Type" in resp.headers["Access-Control-Allow-Headers"]

    def test_player_alias(self, client: TestClient, resolve_uc: AsyncMock) -> None:
        resp = client.get("/api/player/resolve", params={"url": EMBED_URL})

        assert resp.status_code == 200
        assert resp.json()["ok"] is True


# ---------------------------------------------------------------------------
# POST /resolve/candidates
# ---------------------------------------------------------------------------


class TestCandidatesEndpoint:
    def test_passes_candidates(
        self, client: TestClient, resolve_uc: AsyncMock
    ) -> None:
        resp = client.post(
            "/resolve/candidates",
            json={"candidates": [EMBED_URL, "https://b.example/e/1"], "referer": "r"},
        )

        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        resolve_uc.resolve_candidates.assert_awaited_once_with(
            [EMBED_URL, "https://b.example/e/1"], referer="r"
        )

    def test_empty_list_rejected(self, client: TestClient) -> None:
        resp = client.post("/resolve/candidates", json={"candidates": []})
        assert resp.status_code == 422

    def test_too_many_rejected(self, client: TestClient) -> None:
        candidates = [f"https://h{i}.example/embed/1" for i in range(21)]
        resp = client.post("/resolve/candidates", json={"candidates": candidates})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_healthz(self, client: TestClient) -> None:
        resp = client.get("/healthz")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "cache": "memory"}
