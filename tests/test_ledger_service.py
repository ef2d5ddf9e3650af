from datetime import date, timedelta
from decimal import Decimal

import pytest

from partnerledger.core.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from partnerledger.models import TokenAccount, User
from partnerledger.models.audit import AuditAction, AuditObjectType, ProjectEventType
from partnerledger.models.token import TransactionDirection, TransactionStatus
from partnerledger.providers.queue.events import LedgerEventType
from partnerledger.repositories.account_repository import AccountRepository
from partnerledger.schemas.token import (
    AccountOverviewFilter,
    AccountSortField,
    AdminTransactionFilter,
    CreateTransferRequest,
    DividendDistribution,
    GlobalStatsFilter,
    SortOrder,
    TransactionHistoryFilter,
    TransactionSortField,
)

from tests.conftest import ADMIN_ID, ALICE_ID, BOB_ID, CAROL_ID


def total_balance(balance_of, user_ids=(ALICE_ID, BOB_ID, CAROL_ID)):
    return sum((balance_of(user_id)[0] for user_id in user_ids), Decimal("0"))


class TestAccounts:
    def test_open_account(self, ledger_service, admin, session_factory):
        # Given: 계정이 없는 사용자
        session = session_factory()
        session.add(User(id=10, email="dave@example.com", nickname="dave"))
        session.commit()
        session.close()

        # When
        account = ledger_service.open_account(10, Decimal("250"))

        # Then
        assert account.user_id == 10
        assert account.balance == Decimal("250.00")
        assert account.initial_amount == Decimal("250.00")
        assert ledger_service.get_balance(10).available == Decimal("250.00")

    def test_open_account_twice_is_invalid(self, ledger_service, alice):
        with pytest.raises(ValidationError):
            ledger_service.open_account(ALICE_ID, Decimal("0"))

    def test_concurrent_open_reports_existing_account(self, ledger_service, alice, balance_of, monkeypatch):
        # Given: 다른 요청이 먼저 개설했지만 존재 확인에서는 보이지 않음
        monkeypatch.setattr(AccountRepository, "get_account", lambda self, user_id: None)

        with pytest.raises(ValidationError):
            ledger_service.open_account(ALICE_ID, Decimal("0"))

        monkeypatch.undo()
        assert balance_of(ALICE_ID)[0] == Decimal("1000.00")

    def test_missing_account(self, ledger_service, admin):
        with pytest.raises(NotFoundError):
            ledger_service.get_balance(ADMIN_ID)


class TestAdminOperations:
    """관리자 지급/차감/배당"""

    def test_admin_grant(self, ledger_service, admin, balance_of, notifier):
        tx = ledger_service.admin_grant(admin, CAROL_ID, Decimal("150"), "welcome bonus")

        assert tx.direction == TransactionDirection.ADMIN_GRANT
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.from_user_id is None
        assert tx.admin_user_id == ADMIN_ID
        assert balance_of(CAROL_ID) == (Decimal("150.00"), Decimal("0.00"), Decimal("150.00"))
        notifier.notify.assert_called_once()
        assert notifier.notify.call_args.args[:2] == (CAROL_ID, LedgerEventType.ADMIN_GRANT)

    def test_admin_deduct(self, ledger_service, admin, balance_of):
        tx = ledger_service.admin_deduct(admin, BOB_ID, Decimal("200"), "correction")

        assert tx.direction == TransactionDirection.ADMIN_DEDUCT
        assert tx.to_user_id is None
        assert balance_of(BOB_ID) == (Decimal("300.00"), Decimal("0.00"), Decimal("300.00"))

    def test_deduct_more_than_balance_fails(self, ledger_service, admin, balance_of):
        # Given: bob 500
        # When / Then
        with pytest.raises(InsufficientFundsError):
            ledger_service.admin_deduct(admin, BOB_ID, Decimal("501"), "too much")

        assert balance_of(BOB_ID) == (Decimal("500.00"), Decimal("0.00"), Decimal("500.00"))

    def test_deduct_cannot_take_reserved_funds(self, ledger_service, transfer_service, admin, alice, balance_of):
        transfer_service.create_transfer(
            alice, CreateTransferRequest(to_user_id=BOB_ID, amount=Decimal("900"), reason="x")
        )

        with pytest.raises(InsufficientFundsError):
            ledger_service.admin_deduct(admin, ALICE_ID, Decimal("200"), "correction")

        assert balance_of(ALICE_ID) == (Decimal("1000.00"), Decimal("900.00"), Decimal("100.00"))

    def test_non_admin_cannot_grant(self, ledger_service, alice):
        with pytest.raises(AuthorizationError):
            ledger_service.admin_grant(alice, ALICE_ID, Decimal("100"), "self")

    def test_invalid_amount(self, ledger_service, admin):
        with pytest.raises(ValidationError):
            ledger_service.admin_grant(admin, ALICE_ID, Decimal("0"), "zero")
        with pytest.raises(ValidationError):
            ledger_service.admin_grant(admin, ALICE_ID, Decimal("1.005"), "too precise")

    def test_dividend_credits_every_recipient(self, ledger_service, admin, balance_of, notifier):
        before = total_balance(balance_of)

        result = ledger_service.distribute_dividend(
            admin,
            project_id=7,
            distributions=[
                DividendDistribution(user_id=ALICE_ID, amount=Decimal("100"), note="lead"),
                DividendDistribution(user_id=BOB_ID, amount=Decimal("50")),
            ],
            reason="Q3 dividend",
        )

        assert result.total_amount == Decimal("150.00")
        assert [tx.reason for tx in result.transactions] == ["Q3 dividend - lead", "Q3 dividend"]
        assert all(tx.related_project_id == 7 for tx in result.transactions)
        assert all(tx.direction == TransactionDirection.DIVIDEND for tx in result.transactions)
        assert total_balance(balance_of) == before + Decimal("150")
        assert notifier.notify.call_count == 2

    def test_dividend_is_all_or_nothing(self, ledger_service, admin, balance_of, notifier):
        before = {user_id: balance_of(user_id) for user_id in (ALICE_ID, BOB_ID)}

        # 세 번째 수령자 계정이 없다
        with pytest.raises(NotFoundError):
            ledger_service.distribute_dividend(
                admin,
                project_id=7,
                distributions=[
                    DividendDistribution(user_id=ALICE_ID, amount=Decimal("100")),
                    DividendDistribution(user_id=BOB_ID, amount=Decimal("50")),
                    DividendDistribution(user_id=999, amount=Decimal("10")),
                ],
                reason="Q3 dividend",
            )

        assert {user_id: balance_of(user_id) for user_id in (ALICE_ID, BOB_ID)} == before
        assert ledger_service.get_transaction_history(ALICE_ID).total_count == 0
        notifier.notify.assert_not_called()


class TestQueries:
    def test_history_filters_and_paging(self, ledger_service, admin):
        for amount in ("10", "20", "30"):
            ledger_service.admin_grant(admin, ALICE_ID, Decimal(amount), "grant")
        ledger_service.admin_deduct(admin, ALICE_ID, Decimal("5"), "fee")

        page = ledger_service.get_transaction_history(
            ALICE_ID, TransactionHistoryFilter(limit=2, offset=0)
        )
        assert page.total_count == 4
        assert len(page.items) == 2
        assert page.has_next is True

        grants = ledger_service.get_transaction_history(
            ALICE_ID, TransactionHistoryFilter(direction=TransactionDirection.ADMIN_GRANT)
        )
        assert grants.total_count == 3

        future = ledger_service.get_transaction_history(
            ALICE_ID, TransactionHistoryFilter(start_date=date.today() + timedelta(days=2))
        )
        assert future.total_count == 0

    def test_transaction_visible_to_parties_only(self, ledger_service, admin, alice, carol):
        tx = ledger_service.admin_grant(admin, ALICE_ID, Decimal("10"), "grant")

        assert ledger_service.get_transaction(tx.id, alice).id == tx.id
        assert ledger_service.get_transaction(tx.id, admin).id == tx.id
        with pytest.raises(AuthorizationError):
            ledger_service.get_transaction(tx.id, carol)

    def test_token_stats(self, ledger_service, transfer_service, admin, alice, bob):
        ledger_service.admin_grant(admin, ALICE_ID, Decimal("100"), "grant")
        ledger_service.admin_deduct(admin, ALICE_ID, Decimal("40"), "fee")
        tx = transfer_service.create_transfer(
            alice, CreateTransferRequest(to_user_id=BOB_ID, amount=Decimal("300"), reason="x")
        )
        transfer_service.review_transfer(tx.id, admin, approve=True)
        transfer_service.confirm_transfer(tx.id, bob, accept=True)

        stats = ledger_service.get_token_stats(ALICE_ID)

        assert stats.total_granted == Decimal("100.00")
        assert stats.total_deducted == Decimal("40.00")
        assert stats.total_sent == Decimal("300.00")
        assert stats.net_change == Decimal("-240.00")
        assert stats.balance == Decimal("760.00")

    def test_integrity_ok_after_activity(self, ledger_service, transfer_service, admin, alice, bob):
        ledger_service.admin_grant(admin, ALICE_ID, Decimal("100"), "grant")
        done = transfer_service.create_transfer(
            alice, CreateTransferRequest(to_user_id=BOB_ID, amount=Decimal("300"), reason="x")
        )
        transfer_service.review_transfer(done.id, admin, approve=True)
        transfer_service.confirm_transfer(done.id, bob, accept=True)
        transfer_service.create_transfer(
            alice, CreateTransferRequest(to_user_id=BOB_ID, amount=Decimal("50"), reason="y")
        )

        result = ledger_service.verify_account_integrity(ALICE_ID)

        assert result.status == "OK"
        assert result.computed_balance == Decimal("800.00")
        assert result.computed_frozen == Decimal("50.00")
        assert result.pending_transfers == 1

    def test_integrity_detects_mismatch(self, ledger_service, session_factory, alice):
        session = session_factory()
        account = session.query(TokenAccount).filter_by(user_id=ALICE_ID).one()
        account.balance = Decimal("999")
        session.commit()
        session.close()

        assert ledger_service.verify_account_integrity(ALICE_ID).status == "MISMATCH"


class TestAuditTrail:
    """원장 변경과 같은 작업 단위에서 남는 감사 로그/프로젝트 타임라인"""

    def test_grant_and_deduct_are_audited(self, ledger_service, admin):
        grant = ledger_service.admin_grant(admin, CAROL_ID, Decimal("150"), "welcome bonus")
        deduct = ledger_service.admin_deduct(admin, CAROL_ID, Decimal("50"), "fee")

        logs = ledger_service.get_audit_logs(admin, object_type=AuditObjectType.TOKEN_TRANSACTION)

        by_object = {log.object_id: log for log in logs}
        assert by_object[grant.id].action == AuditAction.TOKEN_GRANT
        assert by_object[grant.id].user_id == ADMIN_ID
        assert by_object[grant.id].details == {
            "to_user_id": CAROL_ID,
            "amount": "150.00",
            "reason": "welcome bonus",
        }
        assert by_object[deduct.id].action == AuditAction.TOKEN_DEDUCT

    def test_dividend_is_audited_on_project_timeline(self, ledger_service, admin):
        result = ledger_service.distribute_dividend(
            admin,
            project_id=7,
            distributions=[
                DividendDistribution(user_id=ALICE_ID, amount=Decimal("100"), note="lead"),
                DividendDistribution(user_id=BOB_ID, amount=Decimal("50")),
            ],
            reason="Q3 dividend",
        )

        logs = ledger_service.get_audit_logs(
            admin, object_type=AuditObjectType.PROJECT, object_id=7
        )
        events = ledger_service.get_project_events(admin, 7)

        assert [log.action for log in logs] == [AuditAction.TOKEN_DIVIDEND]
        assert logs[0].details["transaction_ids"] == [tx.id for tx in result.transactions]
        assert [event.event_type for event in events] == [ProjectEventType.TOKEN_DIVIDEND_DISTRIBUTED]
        assert events[0].created_by_id == ADMIN_ID
        assert events[0].payload["distributions"] == [
            {"user_id": ALICE_ID, "amount": "100.00", "note": "lead"},
            {"user_id": BOB_ID, "amount": "50.00", "note": None},
        ]

    def test_failed_dividend_leaves_no_trail(self, ledger_service, admin):
        with pytest.raises(NotFoundError):
            ledger_service.distribute_dividend(
                admin,
                project_id=7,
                distributions=[
                    DividendDistribution(user_id=ALICE_ID, amount=Decimal("100")),
                    DividendDistribution(user_id=999, amount=Decimal("10")),
                ],
                reason="Q3 dividend",
            )

        assert ledger_service.get_audit_logs(admin) == []
        assert ledger_service.get_project_events(admin, 7) == []

    def test_completed_project_transfer_is_on_timeline(
        self, ledger_service, transfer_service, admin, alice, bob
    ):
        linked = transfer_service.create_transfer(
            alice,
            CreateTransferRequest(
                to_user_id=BOB_ID, amount=Decimal("30"), reason="design work", related_project_id=5
            ),
        )
        declined = transfer_service.create_transfer(
            alice,
            CreateTransferRequest(
                to_user_id=BOB_ID, amount=Decimal("20"), reason="extra", related_project_id=5
            ),
        )
        for tx in (linked, declined):
            transfer_service.review_transfer(tx.id, admin, approve=True)
        transfer_service.confirm_transfer(linked.id, bob, accept=True)
        transfer_service.confirm_transfer(declined.id, bob, accept=False)

        events = ledger_service.get_project_events(admin, 5)
        logs = ledger_service.get_audit_logs(admin, action=AuditAction.TOKEN_TRANSFER)

        assert len(events) == 1
        assert events[0].event_type == ProjectEventType.TOKEN_TRANSFER_COMPLETED
        assert events[0].payload["transaction_id"] == linked.id
        assert events[0].created_by_id == BOB_ID
        assert [log.object_id for log in logs] == [linked.id]

    def test_trail_is_admin_only(self, ledger_service, alice):
        with pytest.raises(AuthorizationError):
            ledger_service.get_audit_logs(alice)
        with pytest.raises(AuthorizationError):
            ledger_service.get_project_events(alice, 5)


class TestAdminOverview:
    """관리자 전체 조회 (읽기 전용)"""

    def test_list_all_accounts_search_and_sort(self, ledger_service, admin):
        by_balance = ledger_service.list_all_accounts(
            admin, AccountOverviewFilter(sort_by=AccountSortField.BALANCE)
        )
        by_name = ledger_service.list_all_accounts(
            admin,
            AccountOverviewFilter(sort_by=AccountSortField.USER_NAME, sort_order=SortOrder.ASC),
        )
        search = ledger_service.list_all_accounts(admin, AccountOverviewFilter(search="BOB@"))

        assert by_balance.total_count == 3
        assert [item.user_id for item in by_balance.items] == [ALICE_ID, BOB_ID, CAROL_ID]
        assert [item.user_name for item in by_name.items] == ["alice", "bob", "carol"]
        assert search.total_count == 1
        assert search.items[0].user_email == "bob@example.com"
        assert search.items[0].available == Decimal("500.00")

    def test_list_all_accounts_paging(self, ledger_service, admin):
        page = ledger_service.list_all_accounts(
            admin,
            AccountOverviewFilter(
                sort_by=AccountSortField.USER_NAME, sort_order=SortOrder.ASC, limit=2, offset=2
            ),
        )

        assert [item.user_name for item in page.items] == ["carol"]
        assert page.has_next is False

    def test_global_stats(self, ledger_service, transfer_service, admin, alice):
        ledger_service.admin_grant(admin, CAROL_ID, Decimal("100"), "grant")
        ledger_service.admin_deduct(admin, BOB_ID, Decimal("50"), "fee")
        transfer_service.create_transfer(
            alice, CreateTransferRequest(to_user_id=BOB_ID, amount=Decimal("10"), reason="x")
        )
        rejected = transfer_service.create_transfer(
            alice, CreateTransferRequest(to_user_id=BOB_ID, amount=Decimal("5"), reason="y")
        )
        transfer_service.review_transfer(rejected.id, admin, approve=False)

        stats = ledger_service.get_global_stats(admin)

        assert stats.account_count == 3
        assert stats.total_balance == Decimal("1550.00")
        assert stats.total_frozen == Decimal("10.00")
        assert stats.total_initial_amount == Decimal("1500.00")
        assert stats.total_granted == Decimal("100.00")
        assert stats.total_deducted == Decimal("50.00")
        assert stats.total_transferred == Decimal("0.00")
        assert stats.completed_transactions == 2
        assert stats.pending_transactions == 1
        assert stats.rejected_transactions == 1

    def test_global_stats_scoped_by_project_and_date(self, ledger_service, admin):
        ledger_service.admin_grant(admin, CAROL_ID, Decimal("100"), "grant")
        ledger_service.distribute_dividend(
            admin, 3, [DividendDistribution(user_id=ALICE_ID, amount=Decimal("70"))], "dividend"
        )

        project = ledger_service.get_global_stats(admin, GlobalStatsFilter(project_id=3))
        future = ledger_service.get_global_stats(
            admin, GlobalStatsFilter(start_date=date.today() + timedelta(days=2))
        )

        assert project.total_dividend == Decimal("70.00")
        assert project.total_granted == Decimal("0.00")
        assert project.completed_transactions == 1
        assert future.completed_transactions == 0
        # 계정 합계는 조회 조건과 무관한 현재 값
        assert future.total_balance == Decimal("1670.00")

    def test_project_stats(self, ledger_service, transfer_service, admin, alice, bob):
        ledger_service.distribute_dividend(
            admin,
            3,
            [
                DividendDistribution(user_id=ALICE_ID, amount=Decimal("70")),
                DividendDistribution(user_id=BOB_ID, amount=Decimal("30")),
            ],
            "dividend",
        )
        ledger_service.distribute_dividend(
            admin, 4, [DividendDistribution(user_id=CAROL_ID, amount=Decimal("500"))], "dividend"
        )
        tx = transfer_service.create_transfer(
            alice,
            CreateTransferRequest(
                to_user_id=BOB_ID, amount=Decimal("10"), reason="x", related_project_id=3
            ),
        )
        transfer_service.review_transfer(tx.id, admin, approve=True)
        transfer_service.confirm_transfer(tx.id, bob, accept=True)

        stats = ledger_service.get_project_stats(admin)

        assert [s.project_id for s in stats] == [4, 3]
        assert stats[1].total_transferred == Decimal("10.00")
        assert stats[1].total_dividend == Decimal("100.00")
        assert stats[1].transaction_count == 3

    def test_list_all_transactions(self, ledger_service, admin):
        for user_id, amount in ((ALICE_ID, "30"), (BOB_ID, "10"), (CAROL_ID, "20")):
            ledger_service.admin_grant(admin, user_id, Decimal(amount), "grant")
        ledger_service.admin_deduct(admin, ALICE_ID, Decimal("5"), "fee")

        grants = ledger_service.list_all_transactions(
            admin,
            AdminTransactionFilter(
                direction=TransactionDirection.ADMIN_GRANT,
                sort_by=TransactionSortField.AMOUNT,
                sort_order=SortOrder.ASC,
            ),
        )
        everything = ledger_service.list_all_transactions(admin, AdminTransactionFilter(limit=3))

        assert [tx.amount for tx in grants.items] == [
            Decimal("10.00"),
            Decimal("20.00"),
            Decimal("30.00"),
        ]
        assert everything.total_count == 4
        assert everything.has_next is True

    def test_overview_is_admin_only(self, ledger_service, alice):
        with pytest.raises(AuthorizationError):
            ledger_service.list_all_accounts(alice)
        with pytest.raises(AuthorizationError):
            ledger_service.get_global_stats(alice)
        with pytest.raises(AuthorizationError):
            ledger_service.get_project_stats(alice)
        with pytest.raises(AuthorizationError):
            ledger_service.list_all_transactions(alice)
