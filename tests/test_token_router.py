from decimal import Decimal

import pytest
from jose import jwt

from partnerledger.config import settings
from partnerledger.core.security import create_access_token
from partnerledger.providers.queue.events import LedgerEventType

from tests.conftest import ADMIN_ID, ALICE_ID, BOB_ID, CAROL_ID

API = "/api/v1/tokens"


def amount(value):
    return Decimal(str(value))


def error_code(response):
    body = response.json()
    assert body["success"] is False
    return body["error"]["code"]


class TestAuthentication:
    def test_missing_token_returns_401_envelope(self, client, seeded):
        res = client.get(f"{API}/balance")

        assert res.status_code == 401
        assert error_code(res) == "AUTH_001"
        assert res.json()["trace_id"] == res.headers["X-Trace-Id"]

    def test_invalid_token(self, client, seeded):
        res = client.get(f"{API}/balance", headers={"Authorization": "Bearer not-a-jwt"})

        assert res.status_code == 401
        assert error_code(res) == "AUTH_001"

    def test_valid_token(self, client, seeded, monkeypatch):
        # Given: 테스트 서명 키 (사용자 조회는 앱에 주입된 테스트 DB 실행기를 거친다)
        monkeypatch.setattr(settings, "SECRET_KEY", "router-test-key")
        token = create_access_token({"user_id": ALICE_ID, "sub": "alice@example.com"})
        assert jwt.get_unverified_claims(token)["user_id"] == ALICE_ID

        # When
        res = client.get(f"{API}/balance", headers={"Authorization": f"Bearer {token}"})

        # Then
        assert res.status_code == 200
        assert amount(res.json()["balance"]) == Decimal("1000")

    def test_partner_cannot_use_admin_routes(self, client, login_as, alice):
        login_as(alice)

        res = client.post(
            f"{API}/admin/grant", json={"user_id": ALICE_ID, "amount": "100", "reason": "self"}
        )

        assert res.status_code == 403
        assert error_code(res) == "AUTH_002"


class TestPartnerRoutes:
    def test_balance(self, client, login_as, alice):
        login_as(alice)

        res = client.get(f"{API}/balance")

        assert res.status_code == 200
        body = res.json()
        assert body["user_id"] == ALICE_ID
        assert amount(body["available"]) == Decimal("1000")

    def test_transfer_lifecycle(self, client, login_as, admin, alice, bob, notifier):
        # 신청
        login_as(alice)
        res = client.post(
            f"{API}/transfers",
            json={"to_user_id": BOB_ID, "amount": "300", "reason": "project share"},
        )
        assert res.status_code == 201
        transfer = res.json()
        assert transfer["status"] == "PENDING_ADMIN_APPROVAL"
        assert amount(client.get(f"{API}/balance").json()["frozen"]) == Decimal("300")

        # 심사
        login_as(admin)
        pending = client.get(f"{API}/admin/transfers/pending").json()
        assert [t["id"] for t in pending] == [transfer["id"]]
        res = client.post(
            f"{API}/admin/transfers/{transfer['id']}/review", json={"approve": True}
        )
        assert res.json()["status"] == "PENDING_RECEIVER_CONFIRM"

        # 확인
        login_as(bob)
        assert len(client.get(f"{API}/transfers/pending-confirm").json()) == 1
        res = client.post(f"{API}/transfers/{transfer['id']}/confirm", json={"accept": True})
        assert res.status_code == 200
        assert res.json()["status"] == "COMPLETED"
        assert amount(client.get(f"{API}/balance").json()["balance"]) == Decimal("800")

        login_as(alice)
        balance = client.get(f"{API}/balance").json()
        assert amount(balance["balance"]) == Decimal("700")
        assert amount(balance["frozen"]) == Decimal("0")
        assert notifier.notify.call_args.args[:2] == (ALICE_ID, LedgerEventType.TRANSFER_COMPLETED)

    def test_insufficient_funds_envelope(self, client, login_as, alice):
        login_as(alice)

        res = client.post(
            f"{API}/transfers", json={"to_user_id": BOB_ID, "amount": "1000.01", "reason": "x"}
        )

        assert res.status_code == 400
        assert error_code(res) == "BALANCE_001"

    def test_state_conflict_envelope(self, client, login_as, alice, bob):
        login_as(alice)
        transfer = client.post(
            f"{API}/transfers", json={"to_user_id": BOB_ID, "amount": "10", "reason": "x"}
        ).json()

        # 관리자 심사 전에는 받는 사람이 확인할 수 없다
        login_as(bob)
        res = client.post(f"{API}/transfers/{transfer['id']}/confirm", json={"accept": True})

        assert res.status_code == 409
        assert error_code(res) == "STATE_001"
        assert res.json()["error"]["details"]["current_state"] == "PENDING_ADMIN_APPROVAL"

    def test_cancel_by_sender(self, client, login_as, alice, bob):
        login_as(alice)
        transfer = client.post(
            f"{API}/transfers", json={"to_user_id": BOB_ID, "amount": "10", "reason": "x"}
        ).json()

        res = client.post(f"{API}/transfers/{transfer['id']}/cancel", json={"reason": "typo"})

        assert res.status_code == 200
        assert res.json()["status"] == "CANCELLED"

    @pytest.mark.parametrize("bad_amount", ["0", "-5", "1.005"])
    def test_invalid_amount_rejected(self, client, login_as, alice, bad_amount):
        login_as(alice)

        res = client.post(
            f"{API}/transfers", json={"to_user_id": BOB_ID, "amount": bad_amount, "reason": "x"}
        )

        assert res.status_code == 422
        assert error_code(res) == "VALIDATION_001"

    def test_history_rejects_inverted_date_range(self, client, login_as, alice):
        login_as(alice)

        res = client.get(
            f"{API}/transactions", params={"start_date": "2024-05-02", "end_date": "2024-05-01"}
        )

        assert res.status_code == 422
        assert error_code(res) == "VALIDATION_001"

    def test_transaction_detail_hidden_from_third_party(self, client, login_as, admin, carol):
        login_as(admin)
        tx = client.post(
            f"{API}/admin/grant", json={"user_id": ALICE_ID, "amount": "5", "reason": "grant"}
        ).json()

        login_as(carol)
        res = client.get(f"{API}/transactions/{tx['id']}")

        assert res.status_code == 403


class TestAdminRoutes:
    def test_grant_and_deduct(self, client, login_as, admin):
        login_as(admin)

        grant = client.post(
            f"{API}/admin/grant", json={"user_id": CAROL_ID, "amount": "120.50", "reason": "bonus"}
        )
        deduct = client.post(
            f"{API}/admin/deduct", json={"user_id": CAROL_ID, "amount": "20.50", "reason": "fee"}
        )

        assert grant.status_code == 201
        assert grant.json()["admin_user_id"] == ADMIN_ID
        assert deduct.status_code == 201
        balance = client.get(f"{API}/admin/balance/{CAROL_ID}").json()
        assert amount(balance["balance"]) == Decimal("100")

    def test_deduct_over_balance(self, client, login_as, admin):
        login_as(admin)

        res = client.post(
            f"{API}/admin/deduct", json={"user_id": BOB_ID, "amount": "501", "reason": "fee"}
        )

        assert res.status_code == 400
        assert error_code(res) == "BALANCE_001"

    def test_dividend(self, client, login_as, admin):
        login_as(admin)

        res = client.post(
            f"{API}/admin/dividends",
            json={
                "project_id": 3,
                "reason": "Q2 dividend",
                "distributions": [
                    {"user_id": ALICE_ID, "amount": "70"},
                    {"user_id": BOB_ID, "amount": "30", "note": "support"},
                ],
            },
        )

        assert res.status_code == 201
        body = res.json()
        assert amount(body["total_amount"]) == Decimal("100")
        assert len(body["transactions"]) == 2

    def test_dividend_requires_recipients(self, client, login_as, admin):
        login_as(admin)

        res = client.post(
            f"{API}/admin/dividends",
            json={"project_id": 3, "reason": "empty", "distributions": []},
        )

        assert res.status_code == 422

    def test_open_account_and_integrity(self, client, login_as, admin):
        login_as(admin)

        duplicate = client.post(f"{API}/admin/accounts", json={"user_id": ALICE_ID})
        integrity = client.get(f"{API}/admin/integrity/{ALICE_ID}")

        assert duplicate.status_code == 422
        assert integrity.status_code == 200
        assert integrity.json()["status"] == "OK"

    def test_user_history(self, client, login_as, admin):
        login_as(admin)
        client.post(f"{API}/admin/grant", json={"user_id": BOB_ID, "amount": "1", "reason": "a"})
        client.post(f"{API}/admin/grant", json={"user_id": BOB_ID, "amount": "2", "reason": "b"})

        res = client.get(f"{API}/admin/transactions/{BOB_ID}", params={"limit": 1})

        body = res.json()
        assert body["total_count"] == 2
        assert len(body["items"]) == 1
        assert body["has_next"] is True


class TestAdminOverviewRoutes:
    def test_accounts_overview(self, client, login_as, admin):
        login_as(admin)

        res = client.get(
            f"{API}/admin/accounts", params={"sort_by": "balance", "sort_order": "asc"}
        )

        assert res.status_code == 200
        body = res.json()
        assert body["total_count"] == 3
        assert [item["user_id"] for item in body["items"]] == [CAROL_ID, BOB_ID, ALICE_ID]
        assert body["items"][0]["user_email"] == "carol@example.com"

    def test_stats_and_transactions(self, client, login_as, admin):
        login_as(admin)
        client.post(f"{API}/admin/grant", json={"user_id": CAROL_ID, "amount": "40", "reason": "a"})
        client.post(
            f"{API}/admin/dividends",
            json={
                "project_id": 3,
                "reason": "Q2 dividend",
                "distributions": [{"user_id": ALICE_ID, "amount": "70"}],
            },
        )

        stats = client.get(f"{API}/admin/stats").json()
        projects = client.get(f"{API}/admin/stats/projects").json()
        grants = client.get(f"{API}/admin/transactions", params={"direction": "ADMIN_GRANT"}).json()

        assert amount(stats["total_granted"]) == Decimal("40")
        assert amount(stats["total_dividend"]) == Decimal("70")
        assert stats["completed_transactions"] == 2
        assert [p["project_id"] for p in projects] == [3]
        assert grants["total_count"] == 1
        assert grants["items"][0]["to_user_id"] == CAROL_ID

    def test_audit_logs_and_project_timeline(self, client, login_as, admin):
        login_as(admin)
        tx = client.post(
            f"{API}/admin/deduct", json={"user_id": BOB_ID, "amount": "5", "reason": "fee"}
        ).json()
        client.post(
            f"{API}/admin/dividends",
            json={
                "project_id": 3,
                "reason": "Q2 dividend",
                "distributions": [{"user_id": ALICE_ID, "amount": "70"}],
            },
        )

        logs = client.get(
            f"{API}/admin/audit-logs",
            params={"object_type": "TOKEN_TRANSACTION", "object_id": tx["id"]},
        ).json()
        events = client.get(f"{API}/admin/projects/3/events").json()

        assert [log["action"] for log in logs] == ["TOKEN_DEDUCT"]
        assert [event["event_type"] for event in events] == ["TOKEN_DIVIDEND_DISTRIBUTED"]

    def test_stats_rejects_inverted_date_range(self, client, login_as, admin):
        login_as(admin)

        res = client.get(
            f"{API}/admin/stats", params={"start_date": "2024-05-02", "end_date": "2024-05-01"}
        )

        assert res.status_code == 422
        assert error_code(res) == "VALIDATION_001"

    def test_partner_cannot_read_overview(self, client, login_as, alice):
        login_as(alice)

        for path in ("accounts", "stats", "stats/projects", "transactions", "audit-logs"):
            res = client.get(f"{API}/admin/{path}")
            assert res.status_code == 403
