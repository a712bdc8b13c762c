"""Tests for the status poller command-line interface."""

import json
import pytest

from payhero_sdk.connectors import SimulatorConnector, SimulatorConfig
from payhero_sdk.database import (
    Base,
    create_async_engine,
    get_async_session_factory,
)
from payhero_sdk.reconciliation.cli import (
    create_parser,
    main,
    run_check_async,
    run_poll_async,
)
from payhero_sdk.services import SettlementService


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def settling_simulator():
    return SimulatorConnector(SimulatorConfig(settle_on_status_check=True))


async def _seed(database_url, connector, phone=SimulatorConnector.PHONE_SUCCESS):
    engine = create_async_engine(database_url=database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        async with get_async_session_factory(engine)() as session:
            intent, _ = await SettlementService(session, connector).start_payment(
                amount=100, phone_number=phone, account_id="acc_1"
            )
            return intent.reference
    finally:
        await engine.dispose()


class TestParser:

    def test_poll_defaults(self):
        args = create_parser().parse_args(["poll"])
        assert args.grace_seconds is None
        assert args.limit == 100
        assert args.format == "json"

    def test_check_requires_reference(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["check"])


class TestMain:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_negative_grace_rejected(self):
        assert main(["poll", "--grace-seconds", "-5"]) == 1

    def test_missing_configuration(self, monkeypatch):
        monkeypatch.delenv("PAYHERO_USERNAME", raising=False)
        assert main(["check", "GPY1"]) == 1


class TestRunPoll:

    async def test_resolves_and_writes_report(self, database_url, settling_simulator, tmp_path):
        reference = await _seed(database_url, settling_simulator)
        output = tmp_path / "report.json"

        code = await run_poll_async(
            grace_seconds=0,
            output_file=str(output),
            connector=settling_simulator,
            database_url=database_url,
        )

        assert code == 0
        report = json.loads(output.read_text())
        assert report["statistics"]["total_resolved"] == 1
        assert report["outcomes"][0]["reference"] == reference

    async def test_failed_checks_exit_one(self, database_url, settling_simulator):
        await _seed(database_url, settling_simulator)
        # A fresh simulator knows nothing about the seeded push and answers 404
        code = await run_poll_async(
            grace_seconds=0,
            connector=SimulatorConnector(),
            database_url=database_url,
        )
        assert code == 1

    async def test_text_output_to_stdout(self, database_url, settling_simulator, capsys):
        code = await run_poll_async(
            grace_seconds=0,
            output_format="text",
            connector=settling_simulator,
            database_url=database_url,
        )
        assert code == 0
        assert "STATUS POLL SUMMARY" in capsys.readouterr().out


class TestRunCheck:

    async def test_check_known_reference(self, database_url, settling_simulator, capsys):
        reference = await _seed(database_url, settling_simulator)

        code = await run_check_async(reference, connector=settling_simulator, database_url=database_url)

        assert code == 0
        outcome = json.loads(capsys.readouterr().out)
        assert outcome["action"] == "resolved"
        assert outcome["status"] == "SUCCEEDED"

    async def test_check_unknown_reference(self, database_url, settling_simulator):
        code = await run_check_async("missing", connector=settling_simulator, database_url=database_url)
        assert code == 1
