from decimal import Decimal

from tests.conftest import ALICE_ID, BOB_ID, CAROL_ID

API = "/api/v1/grant-tasks"

MEETING = {
    "meeting_id": 9,
    "topic": "Mobility forum",
    "guests": [
        {
            "guest_id": 901,
            "name": "Kang",
            "organization": "Ministry of Land",
            "guest_category": "MINISTRY_LEADER",
            "invited_by_user_id": ALICE_ID,
        },
        {"guest_id": 902, "name": "Oh", "guest_category": "FIN_EXEC"},
    ],
}


def create_meeting_tasks(client, login_as, admin):
    login_as(admin)
    res = client.post(f"{API}/events/meeting-finished", json=MEETING)
    assert res.status_code == 201
    return res.json()


class TestGrantTaskRoutes:
    def test_meeting_finished(self, client, login_as, admin):
        result = create_meeting_tasks(client, login_as, admin)

        assert len(result["created_task_ids"]) == 1
        assert result["incomplete_guest_ids"] == [902]

    def test_meeting_finished_requires_admin(self, client, login_as, alice):
        login_as(alice)

        res = client.post(f"{API}/events/meeting-finished", json=MEETING)

        assert res.status_code == 403

    def test_visit_logged_by_inviter(self, client, login_as, carol):
        login_as(carol)

        res = client.post(
            f"{API}/events/visit-logged",
            json={
                "visit_id": 77,
                "guest_name": "Seo",
                "guest_category": "DEPT_LEADER",
                "visit_date": "2024-06-01",
            },
        )

        assert res.status_code == 201
        body = res.json()
        assert body["inviter_user_id"] == CAROL_ID
        assert body["source"] == {"kind": "ONSITE_VISIT", "visit_id": 77, "visit_date": "2024-06-01"}

    def test_list_and_filter(self, client, login_as, admin):
        create_meeting_tasks(client, login_as, admin)

        pending = client.get(API, params={"status": "PENDING"}).json()
        approved = client.get(API, params={"status": "APPROVED"}).json()

        assert pending["total_count"] == 1
        assert pending["items"][0]["source"]["kind"] == "MEETING_GUEST"
        assert Decimal(str(pending["items"][0]["default_amount"])) == Decimal("2000")
        assert approved["total_count"] == 0

    def test_approve_with_override(self, client, login_as, admin, alice):
        task_id = create_meeting_tasks(client, login_as, admin)["created_task_ids"][0]

        res = client.post(f"{API}/{task_id}/approve", json={"amount_override": "1500", "comment": "ok"})

        assert res.status_code == 200
        body = res.json()
        assert body["task"]["status"] == "APPROVED"
        assert body["task"]["token_transaction_id"] == body["transaction"]["id"]
        assert body["transaction"]["direction"] == "MEETING_INVITE_REWARD"

        login_as(alice)
        balance = client.get("/api/v1/tokens/balance").json()
        assert Decimal(str(balance["balance"])) == Decimal("2500")
        mine = client.get(f"{API}/my").json()
        assert [t["id"] for t in mine["items"]] == [task_id]

    def test_second_decision_conflicts(self, client, login_as, admin):
        task_id = create_meeting_tasks(client, login_as, admin)["created_task_ids"][0]
        client.post(f"{API}/{task_id}/reject", json={"comment": "not eligible"})

        res = client.post(f"{API}/{task_id}/approve", json={})

        assert res.status_code == 409
        assert res.json()["error"]["code"] == "STATE_001"

    def test_partner_cannot_approve(self, client, login_as, admin, bob):
        task_id = create_meeting_tasks(client, login_as, admin)["created_task_ids"][0]

        login_as(bob)
        approve = client.post(f"{API}/{task_id}/approve", json={})
        detail = client.get(f"{API}/{task_id}")

        assert approve.status_code == 403
        assert detail.status_code == 403
        assert bob.id == BOB_ID

    def test_stats(self, client, login_as, admin):
        task_id = create_meeting_tasks(client, login_as, admin)["created_task_ids"][0]
        client.post(f"{API}/{task_id}/approve", json={})

        stats = client.get(f"{API}/stats").json()

        assert stats["approved_count"] == 1
        assert Decimal(str(stats["total_granted"])) == Decimal("2000")

    def test_missing_task(self, client, login_as, admin):
        login_as(admin)

        res = client.get(f"{API}/999")

        assert res.status_code == 404
        assert res.json()["error"]["code"] == "NOT_FOUND_001"


class TestHealth:
    def test_health(self, client):
        res = client.get("/health")

        assert res.status_code == 200
        assert res.json()["status"] == "healthy"
        assert res.json()["database"] == "ok"
        assert res.headers["X-Trace-Id"]

    def test_trace_id_is_echoed(self, client):
        res = client.get("/health", headers={"X-Trace-Id": "trace-abc"})

        assert res.headers["X-Trace-Id"] == "trace-abc"
