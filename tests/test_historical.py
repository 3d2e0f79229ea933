import httpx
import pytest

from nowlogs import LogSerial, NowLogsApi, SourceFetchFailure

_SINCE = LogSerial("1700000000000" + "0" * 38)


def _api(handler, **kwargs) -> NowLogsApi:
    return NowLogsApi(
        api_url="https://api.example.test",
        token="tok",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def _fetch(api: NowLogsApi, target: str = "dpl_1", **overrides):
    params = {
        "target": target,
        "instance_id": None,
        "types": ("stdout", "stderr"),
        "query": "",
        "since": None,
        "until": None,
        "limit": 1000,
        **overrides,
    }
    return await api.fetch(**params)


@pytest.mark.anyio
async def test_fetch_sends_filters_and_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"logs": [{"id": "a"}, "junk"]})

    api = _api(handler, team_id="team_1")
    logs = await _fetch(
        api, instance_id="inst", query="boom", since=_SINCE, limit=50
    )

    assert logs == [{"id": "a"}]
    (request,) = seen
    assert request.url.path == "/now/deployments/dpl_1/logs"
    assert request.headers["Authorization"] == "Bearer tok"
    assert dict(request.url.params) == {
        "limit": "50",
        "teamId": "team_1",
        "instanceId": "inst",
        "types": "stdout,stderr",
        "q": "boom",
        "since": _SINCE.value,
    }


@pytest.mark.anyio
async def test_empty_types_are_not_sent() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"logs": []})

    await _fetch(_api(handler), types=())

    assert "types" not in seen[0].url.params


@pytest.mark.anyio
async def test_host_target_is_resolved_first() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path.startswith("/now/hosts/"):
            return httpx.Response(200, json={"deployment": {"uid": "dpl_9"}})
        return httpx.Response(200, json={"logs": []})

    await _fetch(_api(handler), target="my-app.now.sh")

    assert paths == ["/now/hosts/my-app.now.sh", "/now/deployments/dpl_9/logs"]


@pytest.mark.anyio
async def test_not_found_is_a_fetch_failure() -> None:
    api = _api(lambda request: httpx.Response(404, json={}))

    with pytest.raises(SourceFetchFailure, match="not found"):
        await _fetch(api)


@pytest.mark.anyio
async def test_http_error_carries_server_message() -> None:
    api = _api(
        lambda request: httpx.Response(
            500, json={"error": {"message": "something broke"}}
        )
    )

    with pytest.raises(SourceFetchFailure, match="HTTP 500: something broke"):
        await _fetch(api)


@pytest.mark.anyio
async def test_network_error_is_a_fetch_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SourceFetchFailure, match="network error"):
        await _fetch(_api(handler))


@pytest.mark.anyio
async def test_missing_logs_list_is_a_fetch_failure() -> None:
    api = _api(lambda request: httpx.Response(200, json={"items": []}))

    with pytest.raises(SourceFetchFailure, match="missing logs list"):
        await _fetch(api)
