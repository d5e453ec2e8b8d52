"""Tests for the HTTP API: registration, bots, orders, payment reconciliation and admin."""
import hashlib
import hmac
import json
from datetime import timedelta

import pytest
from sqlalchemy import update

from robomania.models import CompetitionRegistration
from robomania.models.base import async_session_factory, utcnow

TEAM = {
    "teamName": "Circuit Breakers",
    "institution": "IIT Example",
    "leaderName": "Asha",
    "leaderEmail": "lead@x.com",
    "leaderPhone": "9876543210",
    "members": [{"name": "Asha", "email": "lead@x.com", "role": "Leader"}, {"name": "Ravi"}],
}


async def place_order(client, headers, competitions, gateway="PHONEPE"):
    r = await client.post(
        "/api/orders",
        json={"gateway": gateway, "teamData": TEAM, "competitions": competitions},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    return r.json()


async def save_bot(client, headers, name="B1", weight=8, weapon="Spinner", competition="ROBOWARS"):
    r = await client.post(
        "/api/bots",
        json={"robotName": name, "robotWeight": weight, "weaponType": weapon, "competition": competition},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    return r.json()["bot"]


async def registrations(client, headers):
    r = await client.get("/api/check-registration", headers=headers)
    assert r.status_code == 200
    return r.json()["registrations"]


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint returns ok."""
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_register_requires_sign_in(client):
    r = await client.post("/api/register", json=TEAM)
    assert r.status_code == 401
    assert r.json()["detail"] == "Please sign in to continue"


@pytest.mark.asyncio
async def test_register_once_per_email(client, participant_headers):
    headers = participant_headers()
    r = await client.post("/api/register", json=TEAM, headers=headers)
    assert r.status_code == 200
    first = r.json()
    assert first["created"] is True

    r = await client.post("/api/register", json={**TEAM, "teamName": "Renamed"}, headers=headers)
    assert r.json()["teamId"] == first["teamId"]
    assert r.json()["created"] is False

    r = await client.get("/api/check-registration", headers=headers)
    data = r.json()
    assert data["hasRegistered"] is True
    assert data["team"]["teamName"] == "Circuit Breakers"
    assert len(data["members"]) == 2


@pytest.mark.asyncio
async def test_register_missing_fields(client, participant_headers):
    r = await client.post("/api/register", json={"teamName": "Only Name"}, headers=participant_headers())
    assert r.status_code == 400
    assert "institution" in r.json()["detail"]


@pytest.mark.asyncio
async def test_check_registration_without_team(client, participant_headers):
    r = await client.get("/api/check-registration", headers=participant_headers("new@x.com"))
    assert r.status_code == 200
    assert r.json()["hasRegistered"] is False


@pytest.mark.asyncio
async def test_multi_competition_checkout(client, participant_headers, gateways, notifier, sender):
    """Saved bot plus a new bot in one order, paid once, reconciled once."""
    headers = participant_headers()
    await client.post("/api/register", json=TEAM, headers=headers)
    bot = await save_bot(client, headers)

    order = await place_order(
        client,
        headers,
        [
            {"competition": "ROBOWARS", "amount": 300, "botSpec": {"id": bot["id"]}},
            {"competition": "ROBORACE", "amount": 200, "botSpec": {"robotName": "Dash", "robotWeight": 4.5}},
        ],
    )
    assert order["totalAmount"] == 500
    assert order["gateway"] == "PHONEPE"
    assert order["token"] == "checkout-token"
    assert order["redirectUrl"].startswith("http://test/api/payment/redirect/phonepe?orderRef=ROBOMANIA_")
    mid = order["merchantOrderId"]
    assert gateways["PHONEPE"].created[0]["amount"] == 500

    regs = await registrations(client, headers)
    assert len(regs) == 2
    assert {r["paymentStatus"] for r in regs} == {"PENDING"}
    assert {r["paymentId"] for r in regs} == {mid}

    gateways["PHONEPE"].complete(mid, transaction_id="T1")
    r = await client.get("/api/payment/status", params={"orderRef": mid})
    assert r.status_code == 200
    data = r.json()
    assert data["state"] == "COMPLETED"
    assert data["updatedRegistrations"] == 2
    assert data["transactionId"] == "T1"

    r = await client.post("/api/payment/status", json={"orderRef": mid})
    assert r.status_code == 200
    assert r.json()["updatedRegistrations"] == 0

    regs = await registrations(client, headers)
    assert {(r["paymentStatus"], r["registrationStatus"]) for r in regs} == {("COMPLETED", "CONFIRMED")}
    r = await client.get("/api/check-registration", headers=headers)
    assert r.json()["team"]["paymentStatus"] == "COMPLETED"

    await notifier.drain()
    subjects = [m["subject"] for m in sender.sent]
    assert subjects.count("Registration confirmed - RoboMania 2025") == 1
    assert subjects.count("Registration started - payment pending") == 1
    assert all(m["to"] == "lead@x.com" for m in sender.sent)


@pytest.mark.asyncio
async def test_pending_poll_returns_202(client, participant_headers):
    order = await place_order(client, participant_headers(), [{"competition": "ROBOSOCCER"}])
    r = await client.get("/api/payment/status", params={"orderRef": order["merchantOrderId"]})
    assert r.status_code == 202
    assert r.json()["state"] == "PENDING"
    assert r.json()["success"] is False


@pytest.mark.asyncio
async def test_status_for_unknown_order(client):
    r = await client.get("/api/payment/status", params={"orderRef": "ROBOMANIA_nope"})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_robowars_resubmit_reuses_row(client, participant_headers):
    headers = participant_headers()
    await client.post("/api/register", json=TEAM, headers=headers)
    bot = await save_bot(client, headers)
    entry = [{"competition": "ROBOWARS", "botSpec": {"id": bot["id"]}}]
    await place_order(client, headers, entry)
    second = await place_order(client, headers, entry, gateway="RAZORPAY")

    regs = await registrations(client, headers)
    assert len(regs) == 1
    assert regs[0]["paymentId"] == second["merchantOrderId"]
    assert regs[0]["paymentGateway"] == "RAZORPAY"


@pytest.mark.asyncio
async def test_roborace_resubmit_adds_row(client, participant_headers):
    headers = participant_headers()
    await client.post("/api/register", json=TEAM, headers=headers)
    bot = await save_bot(client, headers, name="Dash", weight=4, weapon=None, competition="ROBORACE")
    entry = [{"competition": "ROBORACE", "botSpec": {"id": bot["id"]}}]
    await place_order(client, headers, entry)
    await place_order(client, headers, entry)
    assert len(await registrations(client, headers)) == 2


@pytest.mark.asyncio
async def test_order_rejects_wrong_amount(client, participant_headers, gateways):
    r = await client.post(
        "/api/orders",
        json={"teamData": TEAM, "competitions": [{"competition": "ROBOWARS", "amount": 500}]},
        headers=participant_headers(),
    )
    assert r.status_code == 400
    assert gateways["PHONEPE"].created == []


@pytest.mark.asyncio
async def test_order_requires_competitions(client, participant_headers):
    r = await client.post("/api/orders", json={"teamData": TEAM, "competitions": []}, headers=participant_headers())
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_order_rejects_unknown_gateway(client, participant_headers):
    r = await client.post(
        "/api/orders",
        json={"gateway": "PAYTM", "teamData": TEAM, "competitions": [{"competition": "ROBORACE"}]},
        headers=participant_headers(),
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_gateway_failure_leaves_rows_pending(client, participant_headers, gateways):
    headers = participant_headers()
    gateways["PHONEPE"].fail_create = True
    r = await client.post(
        "/api/orders",
        json={"teamData": TEAM, "competitions": [{"competition": "ROBORACE"}]},
        headers=headers,
    )
    assert r.status_code == 500
    assert "Service unavailable" in r.json()["detail"]
    regs = await registrations(client, headers)
    assert len(regs) == 1
    assert regs[0]["paymentStatus"] == "PENDING"


@pytest.mark.asyncio
async def test_razorpay_bad_signature_then_poll(client, participant_headers, gateways, notifier, sender):
    headers = participant_headers()
    order = await place_order(client, headers, [{"competition": "ROBORACE"}], gateway="RAZORPAY")
    assert order["keyId"] == "rzp_test_key"
    assert order["gatewayOrderRef"] != order["merchantOrderId"]
    gateways["RAZORPAY"].complete(order["merchantOrderId"], transaction_id="pay_1")

    r = await client.post(
        "/api/payment/verify",
        json={
            "razorpay_order_id": order["gatewayOrderRef"],
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "forged",
        },
    )
    assert r.status_code == 400
    assert {reg["paymentStatus"] for reg in await registrations(client, headers)} == {"PENDING"}

    r = await client.get("/api/payment/status", params={"orderRef": order["merchantOrderId"]})
    assert r.status_code == 200
    assert r.json()["state"] == "COMPLETED"

    await notifier.drain()
    assert any("failed" in m["subject"].lower() for m in sender.sent)


@pytest.mark.asyncio
async def test_razorpay_good_signature(client, participant_headers, gateways):
    headers = participant_headers()
    order = await place_order(client, headers, [{"competition": "ROBORACE"}], gateway="RAZORPAY")
    ref = order["gatewayOrderRef"]
    gateways["RAZORPAY"].complete(order["merchantOrderId"], transaction_id="pay_1")
    secret = gateways["RAZORPAY"].signing_secret
    signature = hmac.new(secret.encode(), f"{ref}|pay_1".encode(), hashlib.sha256).hexdigest()

    r = await client.post(
        "/api/payment/verify",
        json={"razorpay_order_id": ref, "razorpay_payment_id": "pay_1", "razorpay_signature": signature},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["merchantOrderId"] == order["merchantOrderId"]
    assert data["transactionId"] == "pay_1"
    assert {reg["paymentStatus"] for reg in await registrations(client, headers)} == {"COMPLETED"}


@pytest.mark.asyncio
async def test_callback_reconciles(client, participant_headers, gateways):
    order = await place_order(client, participant_headers(), [{"competition": "ROBORACE"}])
    mid = order["merchantOrderId"]
    gateways["PHONEPE"].complete(mid)
    body = json.dumps({"event": "checkout.order.completed", "merchantOrderId": mid})

    r = await client.post("/api/payment/callback/phonepe", content=body, headers={"Authorization": "hook:secret"})
    assert r.status_code == 200
    assert r.json() == {"success": True, "state": "COMPLETED"}

    r = await client.post("/api/payment/callback/phonepe", content=body, headers={"Authorization": "wrong"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_callback_for_unknown_order_is_acknowledged(client, gateways):
    body = json.dumps({"event": "checkout.order.completed", "merchantOrderId": "ROBOMANIA_nope"})
    r = await client.post("/api/payment/callback/phonepe", content=body, headers={"Authorization": "hook:secret"})
    assert r.status_code == 200
    assert r.json() == {"success": True, "state": None}
    assert gateways["PHONEPE"].status_calls == 0


@pytest.mark.asyncio
async def test_callback_with_malformed_body_is_acknowledged(client, gateways):
    headers = {"Authorization": "hook:secret"}
    r = await client.post("/api/payment/callback/phonepe", content="[1, 2]", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"success": True, "state": None}

    r = await client.post("/api/payment/callback/phonepe", content="[1, 2]", headers={"Authorization": "nope"})
    assert r.status_code == 401
    assert gateways["PHONEPE"].status_calls == 0


@pytest.mark.asyncio
async def test_order_for_someone_elses_team(client, participant_headers, gateways):
    owner = participant_headers()
    order = await place_order(client, owner, [{"competition": "ROBORACE"}])
    body = {"gateway": "PHONEPE", "teamId": order["teamId"], "competitions": [{"competition": "ROBOSOCCER"}]}

    r = await client.post("/api/orders", json=body, headers=participant_headers("rival@x.com"))
    assert r.status_code == 404
    r = await client.post("/api/orders", json=body)
    assert r.status_code == 404

    regs = await registrations(client, owner)
    assert [(r["competitionType"], r["paymentId"]) for r in regs] == [("ROBORACE", order["merchantOrderId"])]
    assert len(gateways["PHONEPE"].created) == 1

    r = await client.post("/api/orders", json=body, headers=owner)
    assert r.status_code == 200
    assert r.json()["teamId"] == order["teamId"]


@pytest.mark.asyncio
async def test_edit_team_details(client, participant_headers, gateways):
    headers = participant_headers()
    order = await place_order(
        client, headers, [{"competition": "ROBORACE", "members": [{"name": "Pit Crew", "role": "Driver"}]}]
    )
    gateways["PHONEPE"].complete(order["merchantOrderId"])
    await client.get("/api/payment/status", params={"orderRef": order["merchantOrderId"]})

    r = await client.put(
        "/api/team-details",
        json={
            "teamName": "Voltage",
            "contactPhone": "9123456780",
            "robotName": "Sparky",
            "status": "REJECTED",
            "paymentStatus": "PENDING",
            "members": [{"name": "Meera", "role": "Leader"}],
        },
        headers=headers,
    )
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["team"]["teamName"] == "Voltage"
    assert data["team"]["institution"] == "IIT Example"
    assert data["team"]["robotName"] == "Sparky"
    assert (data["team"]["status"], data["team"]["paymentStatus"]) == ("PENDING", "COMPLETED")
    assert [m["name"] for m in data["members"]] == ["Meera"]

    regs = await registrations(client, headers)
    assert {(r["paymentStatus"], r["registrationStatus"]) for r in regs} == {("COMPLETED", "CONFIRMED")}
    r = await client.get("/api/check-registration", headers=headers)
    assert [m["name"] for m in r.json()["members"]] == ["Meera"]


@pytest.mark.asyncio
async def test_edit_team_details_errors(client, participant_headers):
    r = await client.put("/api/team-details", json={"teamName": "Voltage"})
    assert r.status_code == 401
    r = await client.put("/api/team-details", json={"teamName": "Voltage"}, headers=participant_headers("new@x.com"))
    assert r.status_code == 404

    headers = participant_headers()
    await client.post("/api/register", json=TEAM, headers=headers)
    r = await client.put("/api/team-details", json={"institution": " "}, headers=headers)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_callback_unknown_gateway(client):
    r = await client.post("/api/payment/callback/paytm", content="{}")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_redirect_targets(client, participant_headers, gateways):
    headers = participant_headers()
    paid = await place_order(client, headers, [{"competition": "ROBORACE"}])
    failed = await place_order(client, headers, [{"competition": "ROBOSOCCER"}])
    gateways["PHONEPE"].complete(paid["merchantOrderId"])
    gateways["PHONEPE"].fail(failed["merchantOrderId"])

    r = await client.get("/api/payment/redirect/phonepe", params={"orderRef": paid["merchantOrderId"]})
    assert r.status_code == 302
    assert r.headers["location"] == f"http://test/dashboard?payment=success&orderRef={paid['merchantOrderId']}"

    r = await client.get("/api/payment/redirect/phonepe", params={"orderRef": failed["merchantOrderId"]})
    assert r.status_code == 302
    assert r.headers["location"].startswith("http://test/team-register?payment=failed")

    r = await client.get("/api/payment/redirect/phonepe", params={"orderRef": "ROBOMANIA_nope"})
    assert r.status_code == 302
    assert "payment=failed" in r.headers["location"]


@pytest.mark.asyncio
async def test_bot_library(client, participant_headers):
    headers = participant_headers()
    r = await client.post("/api/bots", json={"robotName": "B1", "robotWeight": 6}, headers=headers)
    assert r.status_code == 404

    await client.post("/api/register", json=TEAM, headers=headers)
    bot = await save_bot(client, headers)
    r = await client.get("/api/bots", headers=headers)
    assert r.json()["count"] == 1

    r = await client.get(f"/api/bots/{bot['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["bot"]["weaponType"] == "Spinner"

    await place_order(client, headers, [{"competition": "ROBOWARS", "botSpec": {"id": bot["id"]}}])
    r = await client.delete(f"/api/bots/{bot['id']}", headers=headers)
    assert r.status_code == 200
    regs = await registrations(client, headers)
    assert len(regs) == 1
    assert regs[0]["botId"] is None
    r = await client.get("/api/bots", headers=headers)
    assert r.json()["count"] == 0


@pytest.mark.asyncio
async def test_bot_validation(client, participant_headers):
    headers = participant_headers()
    await client.post("/api/register", json=TEAM, headers=headers)
    r = await client.post("/api/bots", json={"robotName": "Heavy", "robotWeight": 9}, headers=headers)
    assert r.status_code == 400
    r = await client.post(
        "/api/bots",
        json={"robotName": "Unarmed", "robotWeight": 6, "competition": "ROBOWARS"},
        headers=headers,
    )
    assert r.status_code == 400
    assert "Weapon type" in r.json()["detail"]


@pytest.mark.asyncio
async def test_other_teams_bot_is_hidden(client, participant_headers):
    owner = participant_headers()
    other = participant_headers("rival@x.com")
    await client.post("/api/register", json=TEAM, headers=owner)
    await client.post("/api/register", json={**TEAM, "teamName": "Rivals", "leaderEmail": "rival@x.com"}, headers=other)
    bot = await save_bot(client, owner)

    r = await client.get(f"/api/bots/{bot['id']}", headers=other)
    assert r.status_code == 404
    r = await client.delete(f"/api/bots/{bot['id']}", headers=other)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_contact_form(client):
    r = await client.post("/api/contact", json={"name": "Ravi", "email": "ravi@x.com", "message": "Hello"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    r = await client.post("/api/contact", json={"name": "Ravi", "email": "ravi@x", "message": "Hello"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_participant_token_is_not_a_dashboard_login(client, participant_headers):
    r = await client.get("/api/auth/me", headers=participant_headers())
    assert r.status_code == 401
    r = await client.get("/api/admin/stats", headers=participant_headers())
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_admin_stats_and_analytics(client, auth_headers, participant_headers, gateways):
    r = await client.get("/api/admin/stats")
    assert r.status_code == 401

    order = await place_order(
        client, participant_headers(), [{"competition": "ROBORACE"}, {"competition": "ROBOSOCCER"}]
    )
    gateways["PHONEPE"].complete(order["merchantOrderId"])
    await client.get("/api/payment/status", params={"orderRef": order["merchantOrderId"]})

    r = await client.get("/api/admin/stats", headers=auth_headers)
    assert r.status_code == 200
    stats = r.json()["stats"]
    assert stats["totalTeams"] == 1
    assert stats["completedPayments"] == 1
    assert stats["totalRevenue"] == 400
    assert stats["paidRegistrationsByCompetition"] == {"ROBORACE": 1, "ROBOSOCCER": 1}

    r = await client.get("/api/admin/analytics", headers=auth_headers)
    analytics = r.json()["analytics"]
    assert sum(d["count"] for d in analytics["registrationTrends"]) == 1
    assert analytics["paymentDistribution"] == {"COMPLETED": 1}

    r = await client.get("/api/admin/teams", headers=auth_headers)
    [team] = r.json()["teams"]
    assert len(team["registrations"]) == 2
    assert len(team["members"]) == 2


@pytest.mark.asyncio
async def test_admin_status_update(client, auth_headers, participant_headers, notifier, sender):
    r = await client.post("/api/register", json=TEAM, headers=participant_headers())
    team_id = r.json()["teamId"]

    r = await client.patch(f"/api/admin/teams/{team_id}/status", json={"status": "approved"}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["team"]["status"] == "APPROVED"
    r = await client.patch(f"/api/admin/teams/{team_id}/status", json={"status": "MAYBE"}, headers=auth_headers)
    assert r.status_code == 400
    r = await client.patch("/api/admin/teams/missing/status", json={"status": "APPROVED"}, headers=auth_headers)
    assert r.status_code == 404

    await notifier.drain()
    assert [m["subject"] for m in sender.sent] == ["Team status updated: APPROVED"]


@pytest.mark.asyncio
async def test_admin_reminders(client, auth_headers, participant_headers, notifier, sender):
    fresh = await place_order(client, participant_headers(), [{"competition": "ROBORACE"}])
    r = await client.post("/api/admin/send-reminders", headers=auth_headers)
    assert r.json()["sent"] == 0
    assert r.json()["total"] == 1

    async with async_session_factory() as s:
        await s.execute(update(CompetitionRegistration).values(created_at=utcnow() - timedelta(days=3)))
        await s.commit()
    r = await client.post("/api/admin/send-reminders", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["sent"] == 1
    assert r.json()["results"][0]["email"] == "lead@x.com"

    r = await client.post(f"/api/admin/send-reminders/{fresh['teamId']}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["success"] is True

    await notifier.drain()
    reminders = [m for m in sender.sent if m["subject"] == "Payment reminder - RoboMania 2025"]
    assert len(reminders) == 2
    assert "3 day(s)" in reminders[0]["html"]


@pytest.mark.asyncio
async def test_admin_reminder_without_pending(client, auth_headers, participant_headers):
    r = await client.post("/api/register", json=TEAM, headers=participant_headers())
    r = await client.post(f"/api/admin/send-reminders/{r.json()['teamId']}", headers=auth_headers)
    assert r.status_code == 400
    r = await client.post("/api/admin/send-reminders/missing", headers=auth_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_dashboard_login(client, auth_headers):
    r = await client.post("/api/auth/login", json={"username": "admin", "password": "wrong"})
    assert r.status_code == 401
    r = await client.get("/api/auth/me", headers=auth_headers)
    assert r.json() == {"username": "admin", "role": "admin"}


@pytest.mark.asyncio
async def test_me_optional_reports_participant(client, participant_headers):
    r = await client.get("/api/auth/me/optional", headers=participant_headers("Lead@X.com"))
    assert r.json() == {"email": "lead@x.com", "role": "participant"}
    r = await client.get("/api/auth/me/optional")
    assert r.json() is None


@pytest.mark.asyncio
async def test_staff_accounts(client, auth_headers):
    """Add a moderator, who can read stats but not change team status."""
    r = await client.post(
        "/api/auth/users", json={"username": "mod", "password": "modpass", "role": "moderator"}, headers=auth_headers
    )
    assert r.status_code == 200
    r = await client.post("/api/auth/users", json={"username": "mod", "password": "x"}, headers=auth_headers)
    assert r.status_code == 400
    r = await client.post(
        "/api/auth/users", json={"username": "p", "password": "x", "role": "participant"}, headers=auth_headers
    )
    assert r.status_code == 400

    r = await client.post("/api/auth/login", json={"username": "mod", "password": "modpass"})
    mod_headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
    assert (await client.get("/api/admin/stats", headers=mod_headers)).status_code == 200
    r = await client.patch("/api/admin/teams/any/status", json={"status": "APPROVED"}, headers=mod_headers)
    assert r.status_code == 403

    r = await client.patch("/api/auth/users/mod", json={"role": "admin"}, headers=auth_headers)
    assert r.json()["role"] == "admin"
    r = await client.delete("/api/auth/users/admin", headers=auth_headers)
    assert r.status_code == 400
    r = await client.delete("/api/auth/users/mod", headers=auth_headers)
    assert r.status_code == 200
    r = await client.get("/api/auth/users", headers=auth_headers)
    assert [u["username"] for u in r.json()] == ["admin"]
