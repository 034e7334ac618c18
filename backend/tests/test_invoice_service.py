"""
Invoice lifecycle tests.

Verifies:
- Draft creation computes VAT-exclusive per-line totals
- Finalization numbers invoices per day and applies the overdue rule
- Status refresh is idempotent
- Payments move the balance and close the invoice exactly at zero
- paid / cancelled are terminal
"""

from datetime import date

import pytest

from duka.models import InvoicePayment
from duka.models.invoices import (
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_SENT,
)
from duka.services.invoice_service import (
    InvoicePermissionError,
    InvoiceValidationError,
    cancel_invoice,
    create_invoice,
    finalize_invoice,
    get_invoice,
    invoice_stats,
    list_invoices,
    record_payment,
    refresh_status,
    refresh_statuses,
    render_invoice_html,
    update_invoice,
)


TODAY = date(2026, 10, 17)


def _invoice_data(**overrides):
    data = {
        "customer_name": "Mama Njeri Salon",
        "customer_phone": "+254 711 000 000",
        "issue_date": "2026-10-01",
        "due_date": "2026-10-31",
        "items": [
            {"description": "Nivea Lotion 200ml", "quantity": 2, "unit_price_cents": 18000},
            {"description": "Dove Soap Bar", "quantity": 3, "unit_price": "65.00"},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def draft(db_session, admin_user):
    return create_invoice(_invoice_data(), created_by_user_id=admin_user.id)


@pytest.fixture
def sent(draft):
    return finalize_invoice(draft.id, today=TODAY)


class TestCreateInvoice:
    def test_draft_totals(self, draft):
        assert draft.status == STATUS_DRAFT
        assert draft.invoice_number is None
        assert [i.subtotal_cents for i in draft.items] == [36000, 19500]
        assert [i.vat_cents for i in draft.items] == [5760, 3120]
        assert draft.subtotal_cents == 55500
        assert draft.vat_cents == 8880
        assert draft.total_cents == 64380
        assert draft.balance_due_cents == 64380
        assert draft.payment_terms == "Net 30"

    def test_due_date_defaults_from_terms(self, db_session):
        invoice = create_invoice(_invoice_data(due_date=None))
        assert invoice.due_date == date(2026, 10, 31)

    def test_customer_name_required(self, db_session):
        with pytest.raises(InvoiceValidationError):
            create_invoice(_invoice_data(customer_name="  "))

    def test_items_required(self, db_session):
        with pytest.raises(InvoiceValidationError):
            create_invoice(_invoice_data(items=[]))

    @pytest.mark.parametrize(
        "item",
        [
            {"description": "", "quantity": 1, "unit_price_cents": 100},
            {"description": "Soap", "quantity": 0, "unit_price_cents": 100},
            {"description": "Soap", "quantity": 1.5, "unit_price_cents": 100},
            {"description": "Soap", "quantity": 1, "unit_price_cents": -1},
            {"description": "Soap", "quantity": 1},
        ],
    )
    def test_bad_items_rejected(self, db_session, item):
        with pytest.raises(InvoiceValidationError):
            create_invoice(_invoice_data(items=[item]))

    def test_due_before_issue_rejected(self, db_session):
        with pytest.raises(InvoiceValidationError):
            create_invoice(_invoice_data(due_date="2026-09-30"))


class TestFinalize:
    def test_numbering_per_day(self, db_session, sent):
        second = create_invoice(_invoice_data())
        second = finalize_invoice(second.id, today=TODAY)
        assert sent.status == STATUS_SENT
        assert sent.invoice_number == "INV-20261017-0001"
        assert second.invoice_number == "INV-20261017-0002"

        next_day = finalize_invoice(create_invoice(_invoice_data()).id, today=date(2026, 10, 18))
        assert next_day.invoice_number == "INV-20261018-0001"

    def test_only_drafts(self, sent):
        with pytest.raises(InvoiceValidationError):
            finalize_invoice(sent.id, today=TODAY)

    def test_past_due_becomes_overdue_immediately(self, db_session):
        invoice = create_invoice(_invoice_data(issue_date="2026-09-01", due_date="2026-09-15"))
        invoice = finalize_invoice(invoice.id, today=TODAY)
        assert invoice.status == STATUS_OVERDUE


class TestRefreshStatus:
    def test_sent_goes_overdue_after_due_date(self, sent):
        assert refresh_status(sent, date(2026, 10, 31)) is False
        assert refresh_status(sent, date(2026, 11, 1)) is True
        assert sent.status == STATUS_OVERDUE

    def test_idempotent(self, db_session, sent):
        assert refresh_statuses(date(2026, 11, 1)) == 1
        stamp = sent.updated_at
        assert refresh_statuses(date(2026, 11, 1)) == 0
        assert refresh_status(sent, date(2026, 11, 1)) is False
        assert sent.updated_at == stamp

    def test_drafts_are_never_overdue(self, draft):
        assert refresh_status(draft, date(2027, 1, 1)) is False
        assert draft.status == STATUS_DRAFT

    def test_get_invoice_refreshes(self, db_session, sent):
        assert get_invoice(sent.id, today=date(2026, 12, 1)).status == STATUS_OVERDUE


class TestPayments:
    def test_partial_then_full(self, db_session, sent, cashier_user):
        record_payment(sent.id, amount_cents=40000, payment_method="mpesa",
                       reference_number="QJK12345", recorded_by_user_id=cashier_user.id)
        assert sent.amount_paid_cents == 40000
        assert sent.balance_due_cents == 24380
        assert sent.status == STATUS_SENT

        record_payment(sent.id, amount_cents=24380, payment_method="cash")
        assert sent.balance_due_cents == 0
        assert sent.status == STATUS_PAID
        assert len(sent.payments) == 2

    def test_overpayment_rejected_without_writing(self, db_session, sent):
        with pytest.raises(InvoiceValidationError):
            record_payment(sent.id, amount_cents=sent.total_cents + 1, payment_method="cash")
        assert db_session.query(InvoicePayment).count() == 0
        assert sent.amount_paid_cents == 0

    @pytest.mark.parametrize("amount,method", [(0, "cash"), (-5, "cash"), (100, "cheque"), ("100", "cash")])
    def test_invalid_payments(self, sent, amount, method):
        with pytest.raises(InvoiceValidationError):
            record_payment(sent.id, amount_cents=amount, payment_method=method)

    def test_paid_is_terminal(self, db_session, sent):
        record_payment(sent.id, amount_cents=sent.total_cents, payment_method="card")
        with pytest.raises(InvoiceValidationError):
            record_payment(sent.id, amount_cents=1, payment_method="cash")
        # A paid invoice stays paid after its due date
        assert refresh_status(sent, date(2027, 1, 1)) is False
        assert sent.status == STATUS_PAID

    def test_payment_clears_overdue(self, db_session):
        invoice = create_invoice(_invoice_data(issue_date="2026-09-01", due_date="2026-09-15"))
        invoice = finalize_invoice(invoice.id, today=TODAY)
        record_payment(invoice.id, amount_cents=invoice.total_cents, payment_method="bank_transfer")
        assert invoice.status == STATUS_PAID


class TestCancel:
    def test_admin_only(self, sent, cashier_user):
        with pytest.raises(InvoicePermissionError):
            cancel_invoice(sent.id, actor=cashier_user)

    def test_cancel_is_terminal(self, sent, admin_user):
        cancel_invoice(sent.id, actor=admin_user)
        assert sent.status == STATUS_CANCELLED
        assert sent.cancelled_at is not None
        with pytest.raises(InvoiceValidationError):
            record_payment(sent.id, amount_cents=100, payment_method="cash")
        with pytest.raises(InvoiceValidationError):
            cancel_invoice(sent.id, actor=admin_user)


class TestUpdate:
    def test_replace_lines_on_draft(self, draft):
        invoice = update_invoice(
            draft.id,
            {"items": [{"description": "Vaseline 250ml", "quantity": 1, "unit_price_cents": 10000}]},
        )
        assert len(invoice.items) == 1
        assert invoice.total_cents == 11600
        assert invoice.customer_name == "Mama Njeri Salon"

    def test_edited_overdue_invoice_is_reissued(self, db_session):
        invoice = create_invoice(_invoice_data(issue_date="2026-09-01", due_date="2026-09-15"))
        invoice = finalize_invoice(invoice.id, today=TODAY)
        number = invoice.invoice_number
        invoice = update_invoice(invoice.id, {"due_date": "2026-11-15"}, today=TODAY)
        assert invoice.status == STATUS_SENT
        assert invoice.invoice_number == number

    def test_no_edits_after_payment(self, sent):
        record_payment(sent.id, amount_cents=100, payment_method="cash")
        with pytest.raises(InvoiceValidationError):
            update_invoice(sent.id, {"notes": "changed"})

    def test_paid_draft_cannot_drop_below_amount_paid(self, draft):
        record_payment(draft.id, amount_cents=11000, payment_method="mpesa")
        with pytest.raises(InvoiceValidationError):
            update_invoice(
                draft.id,
                {"items": [{"description": "Vaseline 250ml", "quantity": 1, "unit_price_cents": 100}]},
            )
        invoice = get_invoice(draft.id, today=TODAY)
        assert invoice.total_cents == 64380
        assert invoice.balance_due_cents == 64380 - 11000

    def test_paid_draft_can_be_edited_above_amount_paid(self, draft):
        record_payment(draft.id, amount_cents=11000, payment_method="mpesa")
        invoice = update_invoice(
            draft.id,
            {"items": [{"description": "Vaseline 250ml", "quantity": 1, "unit_price_cents": 10000}]},
        )
        assert invoice.total_cents == 11600
        assert invoice.balance_due_cents == 600
        assert invoice.status == STATUS_DRAFT


class TestQueries:
    def test_search_and_status_filter(self, db_session, sent):
        create_invoice(_invoice_data(customer_name="Kajiado Pharmacy"))
        assert [i.id for i in list_invoices(search="njeri", today=TODAY)] == [sent.id]
        assert [i.id for i in list_invoices(search="INV-20261017", today=TODAY)] == [sent.id]
        assert len(list_invoices(status=STATUS_DRAFT, today=TODAY)) == 1
        with pytest.raises(InvoiceValidationError):
            list_invoices(status="archived")

    def test_stats(self, db_session, sent):
        overdue = finalize_invoice(
            create_invoice(_invoice_data(issue_date="2026-09-01", due_date="2026-09-15")).id, today=TODAY
        )
        record_payment(sent.id, amount_cents=10000, payment_method="cash", payment_date="2026-10-05")
        record_payment(overdue.id, amount_cents=5000, payment_method="cash", payment_date="2026-09-20")

        stats = invoice_stats(TODAY)
        assert stats["overdue_count"] == 1
        assert stats["paid_this_month_cents"] == 10000
        assert stats["total_outstanding_cents"] == (64380 - 10000) + (64380 - 5000)

    def test_render_html(self, app, sent):
        html = render_invoice_html(sent)
        assert "INV-20261017-0001" in html
        assert "Mama Njeri Salon" in html
        assert "KES 643.80" in html
        assert app.config["BUSINESS_NAME"] in html
