from dataclasses import dataclass, field
from typing import Any

import pytest

import nowlogs.cli as cli_module
from nowlogs import (
    DEFAULT_TYPES,
    LogRecord,
    LogSerial,
    MissingToken,
    RunConfig,
    Settings,
    SourceFetchFailure,
    build_run_config,
    main,
    run,
)


def _args(*argv: str):
    return cli_module._build_parser().parse_args(list(argv))


def _raw(n: int) -> dict[str, Any]:
    return {
        "id": f"log-{n}",
        "serial": f"{1_700_000_000_000 + n}{0:038d}",
        "date": 1_700_000_000_000 + n,
        "type": "stdout",
        "text": f"line {n}\n",
    }


@dataclass
class FakeHistorical:
    entries: list[dict[str, Any]]
    calls: int = 0

    async def fetch(self, **kwargs: Any) -> list[dict[str, Any]]:
        self.calls += 1
        return list(self.entries)


@dataclass
class ListSink:
    records: list[LogRecord] = field(default_factory=list)

    def render(self, record: LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def no_logging_setup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_module, "_configure_logging", lambda debug: None)


def test_build_run_config_defaults() -> None:
    run_config = build_run_config(_args("dpl_1"))

    assert run_config.target == "dpl_1"
    assert run_config.types == DEFAULT_TYPES
    assert run_config.limit == 1000
    assert run_config.since is None


def test_build_run_config_options() -> None:
    run_config = build_run_config(
        _args(
            "https://my-app-abcdefghijklmnopqrstuvwx.now.sh",
            "-a",
            "-n",
            "20",
            "-q",
            "error",
            "--since",
            "2024-01-01",
            "--until",
            "2024-01-02",
        )
    )

    assert run_config.target == "my-app.now.sh"
    assert run_config.instance_id == "abcdefghijklmnopqrstuvwx"
    assert run_config.types == ()
    assert run_config.limit == 20
    assert run_config.query == "error"
    assert run_config.since == LogSerial("1704067200000" + "0" * 38)
    assert run_config.until == LogSerial("1704153600000" + "0" * 38)


def test_follow_ignores_until() -> None:
    run_config = build_run_config(_args("dpl_1", "-f", "--until", "2024-01-02"))

    assert run_config.follow is True
    assert run_config.until is None


@pytest.mark.anyio
@pytest.mark.parametrize("argv", [[], ["help"]])
async def test_missing_target_prints_help(argv: list[str], capsys) -> None:
    assert await main(argv) == 0
    assert "usage: now-logs" in capsys.readouterr().out


@pytest.mark.anyio
async def test_non_positive_limit_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as exc_info:
        await main(["dpl_1", "-n", "0"])

    assert exc_info.value.code == 2


@pytest.mark.anyio
@pytest.mark.parametrize(
    "argv",
    [["dpl_1", "--since", "not-a-date"], ["https://my-app.now.sh/some/path"]],
)
async def test_invalid_arguments_fail_before_fetching(
    argv: list[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[RunConfig] = []

    async def fake_run(run_config: RunConfig, **kwargs: Any) -> int:
        calls.append(run_config)
        return 0

    monkeypatch.setattr(cli_module, "run", fake_run)
    monkeypatch.setattr(
        cli_module,
        "_configure_logging",
        lambda debug: pytest.fail("logging configured before validation"),
    )

    assert await main(argv) == 1
    assert calls == []


@pytest.mark.anyio
async def test_main_passes_cli_overrides_to_settings(
    monkeypatch: pytest.MonkeyPatch, no_logging_setup: None
) -> None:
    seen: list[tuple[RunConfig, Settings]] = []

    async def fake_run(run_config: RunConfig, *, settings: Settings) -> int:
        seen.append((run_config, settings))
        return 3

    monkeypatch.setattr(cli_module, "run", fake_run)

    assert await main(["dpl_1", "-t", "cli-token", "-T", "team_1"]) == 0
    ((run_config, settings),) = seen
    assert run_config.target == "dpl_1"
    assert settings.token == "cli-token"
    assert settings.team == "team_1"


@pytest.mark.anyio
async def test_main_reports_fetch_failures(
    monkeypatch: pytest.MonkeyPatch, no_logging_setup: None
) -> None:
    async def failing_run(run_config: RunConfig, *, settings: Settings) -> int:
        raise SourceFetchFailure("Logs request failed: HTTP 500")

    monkeypatch.setattr(cli_module, "run", failing_run)

    assert await main(["dpl_1", "-t", "tok"]) == 1


@pytest.mark.anyio
async def test_run_one_shot_prints_sorted_records() -> None:
    historical = FakeHistorical([_raw(3), _raw(1), _raw(2)])
    sink = ListSink()

    count = await run(
        RunConfig(target="dpl_1"),
        settings=Settings(token="tok"),
        historical=historical,
        sink=sink,
    )

    assert count == 3
    assert [r.identity for r in sink.records] == ["log-1", "log-2", "log-3"]
    assert historical.calls == 1


@pytest.mark.anyio
async def test_run_requires_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NOW_TOKEN", raising=False)
    historical = FakeHistorical([])

    with pytest.raises(MissingToken):
        await run(
            RunConfig(target="dpl_1"),
            settings=Settings(),
            historical=historical,
            sink=ListSink(),
        )

    assert historical.calls == 0


@pytest.mark.anyio
async def test_follow_run_subscribes_by_host_for_url_targets(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: list[Any] = []

    class CapturingEngine:
        def __init__(self, run_config: RunConfig, **kwargs: Any) -> None:
            self.emitted_count = 0

        async def run(self, live: Any) -> None:
            captured.append(live)

    monkeypatch.setattr(cli_module, "ReconciliationEngine", CapturingEngine)

    await run(
        RunConfig(target="my-app.now.sh", follow=True),
        settings=Settings(token="tok", log_io_url="https://log-io.example.test"),
        historical=FakeHistorical([]),
        sink=ListSink(),
    )

    (live,) = captured
    assert live.is_url is True
    assert "host=my-app.now.sh" in live.subscription_url()
