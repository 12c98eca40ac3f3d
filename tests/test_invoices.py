import uuid
from decimal import Decimal

import pytest

from bizadmin import models
from bizadmin.database import session_scope
from bizadmin.errors import InvalidState, NotFound
from bizadmin.models import InvoiceStatus


def status_of(container, invoice_id):
    with session_scope(container.session_factory) as db:
        return db.get(models.Invoice, invoice_id).status


class TestUpdateStatus:
    def test_paid_stamps_paid_date(self, container, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.SENT)

        updated = container.invoices.update_status(invoice.id, InvoiceStatus.PAID)

        assert updated.status == InvoiceStatus.PAID
        assert updated.paid_date is not None

    def test_other_statuses_leave_paid_date_empty(self, container, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.DRAFT)

        updated = container.invoices.update_status(invoice.id, InvoiceStatus.CANCELLED)

        assert updated.status == InvoiceStatus.CANCELLED
        assert updated.paid_date is None

    def test_missing_invoice(self, container):
        with pytest.raises(NotFound):
            container.invoices.update_status(uuid.uuid4(), InvoiceStatus.PAID)


class TestSendInvoice:
    def test_sending_a_draft_marks_it_sent(self, container, transport, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.DRAFT, total="75.00")

        result = container.invoices.send_invoice(invoice.id)

        assert result.success is True
        assert status_of(container, invoice.id) == InvoiceStatus.SENT
        assert transport.sent[0].subject == f"Invoice {invoice.invoice_number}"
        assert "$75.00" in transport.sent[0].html

    def test_sending_an_overdue_invoice_keeps_status(self, container, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.OVERDUE)

        container.invoices.send_invoice(invoice.id)

        assert status_of(container, invoice.id) == InvoiceStatus.OVERDUE

    def test_paid_invoice_cannot_be_sent(self, container, transport, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.PAID)

        with pytest.raises(InvalidState):
            container.invoices.send_invoice(invoice.id)
        assert transport.sent == []

    def test_delivery_failure_is_reported(self, container, transport, make_invoice):
        transport.should_fail = True
        invoice = make_invoice(status=InvoiceStatus.DRAFT)

        result = container.invoices.send_invoice(invoice.id)

        assert result.success is False
        assert "SMTP server unavailable" in result.message
        assert status_of(container, invoice.id) == InvoiceStatus.DRAFT


class TestOverdueSweep:
    def test_only_sent_and_past_due_are_marked(self, container, make_invoice):
        overdue = make_invoice(status=InvoiceStatus.SENT, due_in_days=-1)
        current = make_invoice(status=InvoiceStatus.SENT, due_in_days=5)
        untouched = {
            status: make_invoice(status=status, due_in_days=-1)
            for status in (InvoiceStatus.DRAFT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED)
        }

        assert container.invoices.mark_overdue_invoices() == 1

        assert status_of(container, overdue.id) == InvoiceStatus.OVERDUE
        assert status_of(container, current.id) == InvoiceStatus.SENT
        for status, invoice in untouched.items():
            assert status_of(container, invoice.id) == status

    def test_second_run_marks_nothing(self, container, make_invoice):
        make_invoice(status=InvoiceStatus.SENT, due_in_days=-3)
        make_invoice(status=InvoiceStatus.SENT, due_in_days=-10)

        assert container.invoices.mark_overdue_invoices() == 2
        assert container.invoices.mark_overdue_invoices() == 0


class TestStats:
    def test_counts_and_revenue(self, container, make_invoice):
        make_invoice(status=InvoiceStatus.PAID, total="100.00")
        make_invoice(status=InvoiceStatus.PAID, total="8.50")
        make_invoice(status=InvoiceStatus.SENT, total="40.00")
        make_invoice(status=InvoiceStatus.DRAFT, total="10.00")
        make_invoice(status=InvoiceStatus.OVERDUE, total="5.00")

        stats = container.invoices.get_stats()

        assert stats.total == 5
        assert stats.paid == 2
        assert stats.sent == 1
        assert stats.draft == 1
        assert stats.overdue == 1
        assert stats.cancelled == 0
        assert stats.total_revenue == Decimal("108.50")

    def test_empty(self, container):
        stats = container.invoices.get_stats()

        assert stats.total == 0
        assert stats.total_revenue == Decimal("0")
