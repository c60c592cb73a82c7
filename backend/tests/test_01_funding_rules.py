"""
Unit Tests -- transition planning, goal predicate, record validation.

These tests exercise the pure functions behind the donation ledger and
campaign aggregate without a database or HTTP layer.
"""
import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import DataError

from app.errors import ValidationError
from app.services.attachment_store import UploadedFile, validate_uploads
from app.services.audit_service import AuditEventCategory, classify_action
from app.services.campaign_service import check_goal_achieved, validate_campaign
from app.services.donation_ledger import parse_money, validate_donation
from app.services.funding import Adjustment, FundingReconciler, FundingState, plan_adjustments

C1 = uuid.UUID("00000000-0000-0000-0000-000000000001")
C2 = uuid.UUID("00000000-0000-0000-0000-000000000002")


def cash(amount, campaign=None) -> FundingState:
    return FundingState("cash", Decimal(str(amount)), campaign)


def goods(campaign=None) -> FundingState:
    return FundingState("goods", Decimal("0"), campaign)


class TestPlanAdjustments:
    """Every row of the old-link -> new-link transition table."""

    def test_none_to_none_is_noop(self):
        assert plan_adjustments(cash(100), cash(200)) == []

    def test_create_linked_cash_increments(self):
        assert plan_adjustments(None, cash(600, C1)) == [Adjustment(C1, Decimal("600"))]

    def test_create_unlinked_cash_is_noop(self):
        assert plan_adjustments(None, cash(600)) == []

    def test_unlink_decrements_old_amount(self):
        assert plan_adjustments(cash(300, C1), cash(300)) == [Adjustment(C1, Decimal("-300"))]

    def test_same_campaign_same_amount_is_noop(self):
        assert plan_adjustments(cash(200, C1), cash(200, C1)) == []

    def test_same_campaign_amount_change_applies_difference(self):
        """200 -> 150 on the same campaign is a single -50 delta."""
        assert plan_adjustments(cash(200, C1), cash(150, C1)) == [Adjustment(C1, Decimal("-50"))]

    def test_move_between_campaigns(self):
        result = plan_adjustments(cash(300, C1), cash(350, C2))
        assert result == [Adjustment(C1, Decimal("-300")), Adjustment(C2, Decimal("350"))]

    def test_move_result_is_ordered_by_campaign_id(self):
        result = plan_adjustments(cash(300, C2), cash(300, C1))
        assert [a.campaign_id for a in result] == [C1, C2]

    def test_cash_to_goods_treated_as_unlink(self):
        assert plan_adjustments(cash(400, C1), goods(C1)) == [Adjustment(C1, Decimal("-400"))]

    def test_goods_to_cash_treated_as_link(self):
        assert plan_adjustments(goods(), cash(75, C1)) == [Adjustment(C1, Decimal("75"))]

    def test_goods_never_touch_a_campaign(self):
        """Even a goods state carrying a campaign id credits nothing."""
        assert plan_adjustments(None, goods(C1)) == []
        assert plan_adjustments(goods(C1), None) == []

    def test_delete_linked_cash_decrements(self):
        assert plan_adjustments(cash(400, C1), None) == [Adjustment(C1, Decimal("-400"))]

    def test_funding_state_of_donation_row(self):
        row = SimpleNamespace(donation_type="cash", amount=Decimal("12.50"), campaign_id=C1)
        state = FundingState.of(row)
        assert state.funded_campaign == C1
        assert state.amount == Decimal("12.50")


class TestGoalPredicate:

    @pytest.mark.parametrize("current, goal, expected", [
        ("1100", "1000", True),
        ("1000", "1000", True),
        ("999.99", "1000", False),
        ("0", "0", False),
        ("50", "0", False),
    ])
    def test_goal_achieved(self, current, goal, expected):
        campaign = SimpleNamespace(current_amount=Decimal(current), goal_amount=Decimal(goal))
        assert check_goal_achieved(campaign) is expected


class TestDonationValidation:

    def _base(self, **overrides):
        data = {
            "donor_name": "Omar",
            "donation_type": "cash",
            "amount": "10",
            "date_received": date(2024, 3, 1),
        }
        data.update(overrides)
        return data

    def test_missing_required_fields_are_named(self):
        with pytest.raises(ValidationError) as exc:
            validate_donation({"donation_type": "cash", "amount": 5})
        assert exc.value.fields == {
            "donor_name": True,
            "donation_type": False,
            "date_received": True,
        }

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_donation(self._base(donation_type="crypto"))
        assert exc.value.field == "donation_type"

    def test_cash_amount_zero_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_donation(self._base(amount=0))
        assert exc.value.field == "amount"

    def test_cash_amount_missing_rejected(self):
        with pytest.raises(ValidationError):
            validate_donation(self._base(amount=None))

    def test_cash_amount_one_cent_accepted(self):
        assert validate_donation(self._base(amount="0.01"))["amount"] == Decimal("0.01")

    def test_amount_rounded_to_cents(self):
        assert parse_money("10.005", "amount") == Decimal("10.01")

    def test_largest_storable_amount_accepted(self):
        assert parse_money("9999999999.99", "amount") == Decimal("9999999999.99")

    @pytest.mark.parametrize("value", ["10000000000", 1e10, "-10000000000", "1e30"])
    def test_amount_beyond_column_range_rejected(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_money(value, "amount")
        assert exc.value.field == "amount"

    @pytest.mark.parametrize("value", ["NaN", "Infinity", float("inf")])
    def test_non_finite_amount_rejected(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_donation(self._base(amount=value))
        assert exc.value.field == "amount"

    def test_goods_requires_description(self):
        with pytest.raises(ValidationError) as exc:
            validate_donation(self._base(donation_type="goods", description="  "))
        assert exc.value.field == "description"

    def test_goods_amount_forced_to_zero(self):
        values = validate_donation(
            self._base(donation_type="goods", description="blankets", amount="250")
        )
        assert values["amount"] == Decimal("0")

    def test_iso_date_string_parsed(self):
        values = validate_donation(self._base(date_received="2024-03-01"))
        assert values["date_received"] == date(2024, 3, 1)

    def test_invalid_campaign_id_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_donation(self._base(campaign_id="not-a-uuid"))
        assert exc.value.field == "campaign_id"


class TestCampaignValidation:

    def _base(self, **overrides):
        data = {
            "title": "Ramadan Meals",
            "description": "Iftar boxes",
            "start_date": "2024-03-10",
            "goal_amount": "5000",
        }
        data.update(overrides)
        return data

    def test_defaults_status_to_active(self):
        assert validate_campaign(self._base())["status"] == "active"

    def test_missing_fields_are_named(self):
        with pytest.raises(ValidationError) as exc:
            validate_campaign({"title": "Only a title"})
        assert exc.value.fields["description"] is True
        assert exc.value.fields["title"] is False

    def test_negative_goal_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_campaign(self._base(goal_amount="-1"))
        assert exc.value.field == "goal_amount"

    def test_goal_beyond_column_range_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_campaign(self._base(goal_amount="10000000000"))
        assert exc.value.field == "goal_amount"

    def test_zero_goal_accepted(self):
        assert validate_campaign(self._base(goal_amount=0))["goal_amount"] == Decimal("0")

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_campaign(self._base(end_date="2024-03-01"))
        assert exc.value.field == "end_date"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_campaign(self._base(status="paused"))
        assert exc.value.field == "status"


class TestUploadValidation:

    def test_allowed_file_passes(self):
        validate_uploads([UploadedFile("poster.PNG", "image/png", b"\x89PNG")])

    def test_disallowed_extension_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_uploads([UploadedFile("run.exe", "application/octet-stream", b"MZ")])
        assert exc.value.field == "attachments"

    def test_too_many_files_rejected(self):
        files = [UploadedFile(f"f{i}.pdf", "application/pdf", b"%PDF") for i in range(6)]
        with pytest.raises(ValidationError):
            validate_uploads(files)


class TestAuditClassification:

    @pytest.mark.parametrize("action, category", [
        ("donation.create", AuditEventCategory.MUTATION),
        ("funding.reconcile", AuditEventCategory.MUTATION),
        ("auth.login", AuditEventCategory.MUTATION),
        ("auth.failed", AuditEventCategory.SYSTEM),
    ])
    def test_classify_action(self, action, category):
        assert classify_action(action) == category


class _Rows:
    def all(self):
        return []


class RecordingSession:
    """Stands in for AsyncSession and keeps each statement as PostgreSQL SQL."""

    def __init__(self, error: Exception | None = None):
        self.statements: list[str] = []
        self.error = error

    async def execute(self, stmt):
        self.statements.append(str(stmt.compile(dialect=postgresql.dialect())))
        if self.error is not None:
            raise self.error
        return _Rows()


class TestFundingReconcilerStatements:

    async def test_repair_locks_campaigns_before_summing_ledger(self):
        session = RecordingSession()
        await FundingReconciler(session).recompute()

        lock, ledger = session.statements
        assert "FROM campaigns" in lock
        assert lock.rstrip().endswith("FOR UPDATE")
        assert "sum(donations.amount)" in ledger

    async def test_dry_run_takes_no_locks(self):
        session = RecordingSession()
        await FundingReconciler(session).recompute(dry_run=True)

        assert not any("FOR UPDATE" in sql for sql in session.statements)

    async def test_counter_overflow_is_a_validation_error(self):
        overflow = DataError("UPDATE campaigns", {}, Exception("numeric field overflow"))
        session = RecordingSession(error=overflow)

        with pytest.raises(ValidationError) as exc:
            await FundingReconciler(session).apply([Adjustment(C1, Decimal("5"))])
        assert exc.value.field == "amount"
