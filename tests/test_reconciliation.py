"""Tests for the status poller and its reports."""

import csv
import io
import json
import threading
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from payhero_sdk.connectors import SimulatorConnector, SimulatorConfig, StatusResult
from payhero_sdk.database import IntentStatus, LedgerRepository, utcnow
from payhero_sdk.reconciliation import (
    StatusPoller,
    PollAction,
    PollOutcome,
    PollReport,
    PollRequest,
    ReconciliationStatus,
    ReportGenerator,
    map_provider_status,
)
from payhero_sdk.services import SettlementService


async def _start(db_session, connector, phone=SimulatorConnector.PHONE_SUCCESS, amount=500):
    service = SettlementService(db_session, connector)
    intent, _ = await service.start_payment(amount=amount, phone_number=phone, account_id="acc_1")
    return intent


class TestMapProviderStatus:

    @pytest.mark.parametrize("status,expected", [
        ("SUCCESS", IntentStatus.SUCCEEDED),
        ("success", IntentStatus.SUCCEEDED),
        ("COMPLETED", IntentStatus.SUCCEEDED),
        ("FAILED", IntentStatus.FAILED),
        ("CANCELLED", IntentStatus.FAILED),
        ("REVERSED", IntentStatus.FAILED),
        ("QUEUED", None),
        ("PENDING", None),
        ("UNKNOWN", None),
        ("", None),
    ])
    def test_mapping(self, status, expected):
        assert map_provider_status(status) == expected


class TestPollIntent:
    """Tests for polling a single intent."""

    async def test_resolves_success(self, db_session, simulator):
        intent = await _start(db_session, simulator)
        simulator.settle(intent.reference)

        outcome = await StatusPoller(db_session, simulator).poll_intent(intent.reference)

        assert outcome.action == PollAction.RESOLVED
        assert outcome.provider_status == "SUCCESS"
        assert outcome.status == "SUCCEEDED"
        assert outcome.resolved_via == "POLL"
        stored = await SettlementService(db_session, simulator).get_intent(intent.reference)
        assert stored.provider_receipt_number == simulator.get_push(intent.reference).receipt_number
        assert await LedgerRepository(db_session).total_for_account("acc_1") == 500

    async def test_resolves_failure(self, db_session, simulator):
        intent = await _start(db_session, simulator, phone=SimulatorConnector.PHONE_CANCELLED)
        simulator.settle(intent.reference)

        outcome = await StatusPoller(db_session, simulator).poll_intent(intent.reference)

        assert outcome.action == PollAction.RESOLVED
        assert outcome.status == "FAILED"
        assert await LedgerRepository(db_session).total_for_account("acc_1") == 0

    async def test_queued_stays_pending(self, db_session, simulator):
        intent = await _start(db_session, simulator)

        outcome = await StatusPoller(db_session, simulator).poll_intent(intent.reference)

        assert outcome.action == PollAction.STILL_PENDING
        assert outcome.provider_status == "QUEUED"
        assert outcome.status == "PENDING"

    async def test_failed_check_leaves_intent_pending(self, db_session, simulator):
        intent = await _start(db_session, simulator)
        connector = MagicMock(wraps=simulator)
        connector.check_status.return_value = StatusResult(success=False, status="ERROR", message="timeout")

        outcome = await StatusPoller(db_session, connector).poll_intent(intent.reference)

        assert outcome.action == PollAction.CHECK_FAILED
        assert outcome.provider_status == "ERROR"
        stored = await SettlementService(db_session, simulator).get_intent(intent.reference)
        assert stored.status == "PENDING"

    async def test_terminal_intent_not_checked(self, db_session, simulator):
        intent = await _start(db_session, simulator)
        await SettlementService(db_session, simulator).handle_callback(simulator.settle(intent.reference))
        connector = MagicMock(wraps=simulator)

        outcome = await StatusPoller(db_session, connector).poll_intent(intent.reference)

        assert outcome.action == PollAction.ALREADY_RESOLVED
        assert outcome.resolved_via == "CALLBACK"
        connector.check_status.assert_not_called()

    async def test_unknown_reference(self, db_session, simulator):
        outcome = await StatusPoller(db_session, simulator).poll_intent("missing")
        assert outcome.action == PollAction.NOT_FOUND

    async def test_status_check_runs_off_event_loop(self, db_session, simulator):
        intent = await _start(db_session, simulator)
        threads = []
        connector = MagicMock(wraps=simulator)

        def recording_check(reference):
            threads.append(threading.get_ident())
            return simulator.check_status(reference)

        connector.check_status.side_effect = recording_check

        await StatusPoller(db_session, connector).poll_intent(intent.reference)

        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    async def test_callback_after_poll_is_duplicate(self, db_session, simulator):
        intent = await _start(db_session, simulator)
        payload = simulator.settle(intent.reference)
        await StatusPoller(db_session, simulator).poll_intent(intent.reference)

        ack = await SettlementService(db_session, simulator).handle_callback(payload)

        assert ack.applied is False
        assert await LedgerRepository(db_session).total_for_account("acc_1") == 500

    async def test_non_numeric_amount_falls_back_to_intent_amount(self, db_session, simulator):
        intent = await _start(db_session, simulator)
        connector = MagicMock(wraps=simulator)
        connector.check_status.return_value = StatusResult(
            success=True, status="SUCCESS", data={"status": "SUCCESS", "amount": "n/a"}
        )

        await StatusPoller(db_session, connector).poll_intent(intent.reference)

        assert await LedgerRepository(db_session).total_for_account("acc_1") == 500


class TestPollPending:
    """Tests for poll runs over stale intents."""

    async def test_run_resolves_stale_intents(self, db_session):
        simulator = SimulatorConnector(SimulatorConfig(settle_on_status_check=True))
        ok = await _start(db_session, simulator)
        cancelled = await _start(db_session, simulator, phone=SimulatorConnector.PHONE_CANCELLED)
        await _start(db_session, simulator, phone=SimulatorConnector.PHONE_HTTP_ERROR)

        report = await StatusPoller(db_session, simulator).poll_pending(PollRequest(grace_seconds=0))

        assert report.status == ReconciliationStatus.COMPLETED
        assert report.total_candidates == 2
        assert report.total_resolved == 2
        statuses = {o.reference: o.status for o in report.outcomes}
        assert statuses == {ok.reference: "SUCCEEDED", cancelled.reference: "FAILED"}

    async def test_unanswered_push_settled_by_poll(self, db_session):
        simulator = SimulatorConnector(SimulatorConfig(settle_on_status_check=True))
        intent = await _start(db_session, simulator, phone=SimulatorConnector.PHONE_TIMEOUT)
        assert intent.status == "PENDING"

        report = await StatusPoller(db_session, simulator).poll_pending(PollRequest(grace_seconds=0))

        assert report.total_resolved == 1
        assert report.outcomes[0].status == "SUCCEEDED"
        assert await LedgerRepository(db_session).total_for_account("acc_1") == 500

    async def test_grace_period_respected(self, db_session, simulator):
        await _start(db_session, simulator)

        report = await StatusPoller(db_session, simulator).poll_pending(PollRequest(grace_seconds=3600))

        assert report.total_candidates == 0
        assert report.outcomes == []

    async def test_old_intents_polled(self, db_session, simulator):
        intent = await _start(db_session, simulator)
        intent.created_at = utcnow() - timedelta(minutes=5)
        await db_session.commit()

        report = await StatusPoller(db_session, simulator).poll_pending(PollRequest(grace_seconds=120))

        assert report.total_candidates == 1
        assert report.total_still_pending == 1

    async def test_limit(self, db_session, simulator):
        for _ in range(3):
            await _start(db_session, simulator)

        report = await StatusPoller(db_session, simulator).poll_pending(PollRequest(grace_seconds=0, limit=2))

        assert report.total_candidates == 2

    async def test_failure_reported(self, db_session, simulator):
        await _start(db_session, simulator)
        connector = MagicMock(wraps=simulator)
        connector.check_status.side_effect = RuntimeError("boom")

        report = await StatusPoller(db_session, connector).poll_pending(PollRequest(grace_seconds=0))

        assert report.status == ReconciliationStatus.FAILED
        assert report.error_message == "boom"
        assert report.completed_at is not None

    async def test_check_failures_counted(self, db_session, simulator):
        await _start(db_session, simulator)
        connector = MagicMock(wraps=simulator)
        connector.check_status.return_value = StatusResult(success=False, status="HTTP_503")

        report = await StatusPoller(db_session, connector).poll_pending(PollRequest(grace_seconds=0))

        assert report.status == ReconciliationStatus.COMPLETED
        assert report.total_check_failed == 1


@pytest.fixture
def sample_report():
    now = utcnow()
    report = PollReport(
        id="run_1",
        status=ReconciliationStatus.COMPLETED,
        grace_seconds=120,
        cutoff=now - timedelta(seconds=120),
        created_at=now,
        completed_at=now,
        total_candidates=3,
    )
    report.add_outcome(PollOutcome(
        reference="GPY1", action=PollAction.RESOLVED, provider_status="SUCCESS",
        status="SUCCEEDED", resolved_via="POLL",
    ))
    report.add_outcome(PollOutcome(
        reference="GPY2", action=PollAction.STILL_PENDING, provider_status="QUEUED", status="PENDING",
    ))
    report.add_outcome(PollOutcome(
        reference="GPY3", action=PollAction.CHECK_FAILED, provider_status="ERROR",
        status="PENDING", message="timeout",
    ))
    return report


class TestPollReport:

    def test_summary_statistics(self, sample_report):
        stats = sample_report.to_summary_dict()["statistics"]
        assert stats["total_resolved"] == 1
        assert stats["total_still_pending"] == 1
        assert stats["total_check_failed"] == 1
        assert stats["resolution_rate"] == "33.33%"

    def test_empty_resolution_rate(self):
        now = utcnow()
        report = PollReport(id="r", grace_seconds=0, cutoff=now)
        assert report.to_summary_dict()["statistics"]["resolution_rate"] == "N/A"

    def test_full_dict_includes_outcomes(self, sample_report):
        data = sample_report.to_full_dict()
        assert [o["reference"] for o in data["outcomes"]] == ["GPY1", "GPY2", "GPY3"]
        assert data["outcomes"][0]["action"] == "resolved"


class TestReportGenerator:

    def test_json(self, sample_report):
        data = json.loads(ReportGenerator(sample_report).to_json())
        assert data["id"] == "run_1"
        assert len(data["outcomes"]) == 3

    def test_json_summary_only(self, sample_report):
        data = json.loads(ReportGenerator(sample_report).to_json(include_details=False))
        assert "outcomes" not in data

    def test_csv(self, sample_report):
        rows = list(csv.reader(io.StringIO(ReportGenerator(sample_report).to_csv())))
        assert rows[0][0] == "reference"
        assert [r[0] for r in rows[1:]] == ["GPY1", "GPY2", "GPY3"]

    def test_summary_text(self, sample_report):
        text = ReportGenerator(sample_report).to_summary_text()
        assert "STATUS POLL SUMMARY" in text
        assert "Resolved: 1" in text

    def test_detailed_text_groups_outcomes(self, sample_report):
        text = ReportGenerator(sample_report).to_detailed_text()
        assert "RESOLVED (1)" in text
        assert "CHECK FAILED (1)" in text
        assert "GPY3" in text and "(timeout)" in text

    def test_render_rejects_unknown_format(self, sample_report):
        with pytest.raises(ValueError):
            ReportGenerator(sample_report).render("xml")
