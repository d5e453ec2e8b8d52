"""Tests for payment reconciliation: idempotency, legacy teams, failures and gateway outages."""
import pytest
from sqlalchemy import select

from robomania.errors import NotFound
from robomania.models import CompetitionRegistration, NotificationLog, Team
from robomania.models.base import async_session_factory
from robomania.schemas import BotSpec, CompetitionEntry, MemberIn, TeamData
from robomania.services.reconciliation import reconcile, resolve_merchant_order_id
from robomania.services.registrations import attach_gateway_order, write_registrations
from robomania.services.teams import resolve_team

ORDER = "ROBOMANIA_test0001_abcdef12"


async def place_order(session, gateway="PHONEPE", order=ORDER):
    team = await resolve_team(
        session,
        "lead@x.com",
        team_data=TeamData(teamName="Circuit Breakers", institution="IIT Example", members=[MemberIn(name="Asha")]),
    )
    entries = [
        CompetitionEntry(
            type="ROBOWARS", bot=BotSpec(name="Destroyer", weight=8, dimensions="40x40x30", weapon_type="Hammer")
        ),
        CompetitionEntry(type="ROBORACE"),
    ]
    await write_registrations(session, team, entries, order, gateway)
    await session.commit()
    return team


async def load_rows(order=ORDER):
    async with async_session_factory() as s:
        regs = (
            await s.execute(select(CompetitionRegistration).where(CompetitionRegistration.payment_id == order))
        ).scalars().all()
        team = (await s.execute(select(Team))).scalars().first()
        return regs, team


@pytest.mark.asyncio
async def test_completed_order_is_applied_once(session, gateways, notifier, sender):
    await place_order(session)
    gateways["PHONEPE"].complete(ORDER, transaction_id="T100")

    first = await reconcile(session, gateways, ORDER, notifier=notifier)
    assert first.state == "COMPLETED"
    assert first.updated == 2
    assert first.amount == 500
    regs, team = await load_rows()
    assert {(r.payment_status, r.registration_status) for r in regs} == {("COMPLETED", "CONFIRMED")}
    assert {r.transaction_id for r in regs} == {"T100"}
    assert team.payment_status == "COMPLETED"
    assert team.status == "PENDING"
    dates = {r.id: r.payment_date for r in regs}

    second = await reconcile(session, gateways, ORDER, notifier=notifier)
    assert second.state == "COMPLETED"
    assert second.updated == 0
    regs, team = await load_rows()
    assert {r.id: r.payment_date for r in regs} == dates
    assert team.payment_status == "COMPLETED"

    await notifier.drain()
    confirmations = [m for m in sender.sent if "confirmed" in m["subject"]]
    assert len(confirmations) == 1
    assert confirmations[0]["to"] == "lead@x.com"


@pytest.mark.asyncio
async def test_pending_order_writes_nothing(session, gateways, notifier):
    await place_order(session)
    result = await reconcile(session, gateways, ORDER, notifier=notifier)
    assert result.state == "PENDING"
    assert result.error is None
    regs, team = await load_rows()
    assert {r.payment_status for r in regs} == {"PENDING"}
    assert notifier.pending == 0


@pytest.mark.asyncio
async def test_gateway_outage_reports_pending(session, gateways, notifier):
    await place_order(session)
    gateways["PHONEPE"].fail_status = True
    result = await reconcile(session, gateways, ORDER, notifier=notifier)
    assert result.state == "PENDING"
    assert "timeout" in result.error
    regs, team = await load_rows()
    assert {r.payment_status for r in regs} == {"PENDING"}
    assert team.payment_status == "PENDING"


@pytest.mark.asyncio
async def test_failed_order_keeps_rows_and_notifies_once(session, gateways, notifier, sender):
    await place_order(session)
    gateways["PHONEPE"].fail(ORDER, "PAYMENT_DECLINED")
    await reconcile(session, gateways, ORDER, notifier=notifier)
    result = await reconcile(session, gateways, ORDER, notifier=notifier)
    assert result.state == "FAILED"
    assert result.error_code == "PAYMENT_DECLINED"
    regs, team = await load_rows()
    assert {r.payment_status for r in regs} == {"PENDING"}
    assert team.payment_status == "PENDING"

    await notifier.drain()
    assert len(sender.sent) == 1
    assert "failed" in sender.sent[0]["subject"].lower()


@pytest.mark.asyncio
async def test_completed_rows_are_not_downgraded(session, gateways, notifier):
    await place_order(session)
    gateways["PHONEPE"].complete(ORDER)
    await reconcile(session, gateways, ORDER, notifier=notifier)
    gateways["PHONEPE"].fail(ORDER)
    await reconcile(session, gateways, ORDER, notifier=notifier)
    regs, team = await load_rows()
    assert {r.payment_status for r in regs} == {"COMPLETED"}
    assert team.payment_status == "COMPLETED"


@pytest.mark.asyncio
async def test_legacy_team_order(session, gateways):
    team = Team(team_name="Old Guard", institution="NIT", contact_email="old@x.com", payment_id="LEGACY_1")
    session.add(team)
    await session.commit()
    gateways["RAZORPAY"].complete("LEGACY_1", transaction_id="pay_legacy", amount=200)

    result = await reconcile(session, gateways, "LEGACY_1", gateway_name="razorpay")
    assert result.state == "COMPLETED"
    assert result.updated == 1
    assert result.amount == 200
    async with async_session_factory() as s:
        saved = await s.get(Team, team.id)
        assert saved.payment_status == "COMPLETED"
        assert saved.status == "CONFIRMED"


@pytest.mark.asyncio
async def test_unknown_order_not_found(session, gateways):
    with pytest.raises(NotFound):
        await reconcile(session, gateways, "NOPE", gateway_name="PHONEPE")


@pytest.mark.asyncio
async def test_provider_order_id_resolves_to_merchant_reference(session, gateways):
    await place_order(session, gateway="RAZORPAY")
    await attach_gateway_order(session, ORDER, "order_Rzp123")
    await session.commit()
    assert await resolve_merchant_order_id(session, "order_Rzp123") == ORDER
    assert await resolve_merchant_order_id(session, ORDER) == ORDER
    assert await resolve_merchant_order_id(session, "order_unknown") is None


@pytest.mark.asyncio
async def test_confirmation_dedupe_is_durable(session, gateways, notifier):
    await place_order(session)
    gateways["PHONEPE"].complete(ORDER)
    await reconcile(session, gateways, ORDER, notifier=notifier)
    async with async_session_factory() as s:
        logs = (await s.execute(select(NotificationLog))).scalars().all()
    assert [log.dedupe_key for log in logs] == [f"payment_confirmed:{ORDER}"]
