import httpx
import pytest

from marketfeed.datasource import Charli3Source
from marketfeed.services.classifier import ErrorCategory
from marketfeed.services.errors import (
    ApiError,
    InvalidResponseError,
    NotConfiguredError,
    RequestTimeoutError,
)
from marketfeed.settings import ApiConfig, Settings

from tests.conftest import API_URL, ASSET_NAME, POLICY_ID


class TestApiClient:
    @pytest.mark.asyncio
    async def test_sends_bearer_token_and_params(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"s": "ok", "symbol": []})

        client = make_client(handler)
        data = await client.get_json("/api/v1/symbol_info", {"group": "Aggregate"})

        assert data == {"s": "ok", "symbol": []}
        assert seen[0].headers["Authorization"] == "Bearer test-token"
        assert seen[0].url.params["group"] == "Aggregate"
        assert str(seen[0].url).startswith(f"{API_URL}/api/v1/symbol_info")

    @pytest.mark.asyncio
    async def test_counts_calls_per_endpoint(self, make_client):
        client = make_client(lambda request: httpx.Response(200, json={"s": "ok"}))

        await client.get_json("/api/v1/groups")
        await client.get_json("/api/v1/groups")
        await client.get_json("/api/v1/symbol_info", {"group": "Aggregate"})

        assert client.call_log.total == 3
        assert client.call_log.count("/api/v1/groups") == 2
        assert client.call_log.summary()["calls_by_endpoint"][f"{API_URL}/api/v1/symbol_info"] == 1

    @pytest.mark.asyncio
    async def test_error_status_is_classified(self, make_client):
        client = make_client(lambda request: httpx.Response(401, text="bad token"))

        with pytest.raises(ApiError) as exc_info:
            await client.get_json("/api/v1/symbol_info")

        assert exc_info.value.status_code == 401
        assert exc_info.value.error.category == ErrorCategory.AUTH

    @pytest.mark.asyncio
    async def test_non_json_response_rejected(self, make_client):
        client = make_client(
            lambda request: httpx.Response(200, text="<html>", headers={"content-type": "text/html"})
        )

        with pytest.raises(InvalidResponseError):
            await client.get_json("/api/v1/groups")

    @pytest.mark.asyncio
    async def test_error_payload_rejected(self, make_client):
        client = make_client(lambda request: httpx.Response(200, json={"s": "error", "errmsg": "nope"}))

        with pytest.raises(InvalidResponseError):
            await client.get_json("/api/v1/history")

    @pytest.mark.asyncio
    async def test_empty_payloads_accepted(self, make_client):
        bodies = [b"{}", b"[]", b"null"]
        client = make_client(
            lambda request: httpx.Response(
                200, content=bodies.pop(0), headers={"content-type": "application/json"}
            )
        )

        assert await client.get_json("/api/v1/groups") == {}
        assert await client.get_json("/api/v1/groups") == []
        with pytest.raises(InvalidResponseError):
            await client.get_json("/api/v1/groups")

    @pytest.mark.asyncio
    async def test_timeout_mapped(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = make_client(handler)

        with pytest.raises(RequestTimeoutError):
            await client.get_json("/api/v1/groups")

    @pytest.mark.asyncio
    async def test_missing_token_raises_without_network(self, make_client):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"s": "ok"})

        config = ApiConfig(Settings.model_validate({"CHARLI3_API_URL": API_URL}))
        client = make_client(handler, config=config)

        with pytest.raises(NotConfiguredError):
            await client.get_json("/api/v1/groups")
        assert calls == []

    @pytest.mark.asyncio
    async def test_blob_requires_image(self, make_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("png"):
                return httpx.Response(200, content=b"PNG", headers={"content-type": "image/png"})
            return httpx.Response(200, json={"s": "ok"})

        client = make_client(handler)

        assert await client.get_blob("/logo/png") == b"PNG"
        with pytest.raises(InvalidResponseError):
            await client.get_blob("/logo/json")


class TestCharli3Source:
    @pytest.mark.asyncio
    async def test_endpoints(self, make_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/api/v1/groups":
                return httpx.Response(200, json={"d": {"groups": [{"id": "Aggregate"}, {"id": "Minswap"}]}})
            if request.url.path.startswith("/api/v1/tokens/logo/"):
                return httpx.Response(200, content=b"img", headers={"content-type": "image/png"})
            return httpx.Response(200, json={"s": "ok", "t": [1]})

        source = Charli3Source(make_client(handler))

        assert await source.get_groups() == ["Aggregate", "Minswap"]
        await source.get_history("SNEK", "1d", 100, 200)
        await source.get_current_token(POLICY_ID, ASSET_NAME)
        assert await source.get_token_logo(POLICY_ID, ASSET_NAME) == b"img"

        history, current, logo = seen[1], seen[2], seen[3]
        assert history.url.params["include_tvl"] == "true"
        assert history.url.params["from"] == "100"
        assert current.url.params["policy"] == f"{POLICY_ID}{ASSET_NAME}"
        assert logo.url.path == f"/api/v1/tokens/logo/{POLICY_ID}{ASSET_NAME}"
