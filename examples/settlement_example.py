"""
End-to-end settlement walkthrough against the simulator.

Starts a deposit, delivers its callback twice and lets the poller look at it
afterwards, showing that the ledger is credited exactly once. A second deposit
never gets a callback and is settled by the poller instead.
"""
import asyncio

from payhero_sdk.connectors import SimulatorConnector, SimulatorConfig
from payhero_sdk.database import Base, create_async_engine, get_async_session_factory
from payhero_sdk.reconciliation import StatusPoller, PollRequest, ReportGenerator
from payhero_sdk.services import SettlementService


async def run():
    engine = create_async_engine(database_url="sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    connector = SimulatorConnector(SimulatorConfig(settle_on_status_check=True))

    async with get_async_session_factory(engine)() as session:
        service = SettlementService(session, connector)

        # Callback arrives, then is redelivered
        intent, result = await service.start_payment(
            amount=1500, phone_number="+254700000000", account_id="acc_demo"
        )
        print(f"Started {intent.reference}: {result.status}")
        payload = connector.settle(intent.reference)
        print("First callback:", (await service.handle_callback(payload)).model_dump())
        print("Redelivery:   ", (await service.handle_callback(payload)).model_dump())
        await session.commit()

        # Callback never arrives
        lost, _ = await service.start_payment(
            amount=700, phone_number="0700000000", account_id="acc_demo"
        )
        print(f"Started {lost.reference}, waiting for the poller")
        report = await StatusPoller(session, connector).poll_pending(PollRequest(grace_seconds=0))
        print(ReportGenerator(report).to_detailed_text())

        ledger = await service.get_account_ledger("acc_demo")
        print(f"Balance for acc_demo: {ledger['balance']} KES from {len(ledger['entries'])} entries")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(run())
