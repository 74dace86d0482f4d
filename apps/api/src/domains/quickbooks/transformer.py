# apps/api/src/domains/quickbooks/transformer.py
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from src.domains.sync.models import InvoiceRecord, LineItem, PaymentRecord
from src.domains.sync.repository import BaseSyncRepository
from src.shared.exceptions import PayloadValidationError

from .types import (
    QBODiscountLineDetail,
    QBOInvoicePayload,
    QBOLine,
    QBOLinkedTxn,
    QBOPaymentPayload,
    QBORef,
    QBOSalesItemLineDetail,
    QBOTxnTaxDetail,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

SALES_LINE = "SalesItemLineDetail"
DESCRIPTION_LINE = "DescriptionOnly"
DISCOUNT_LINE = "DiscountLineDetail"
TAX_LINE = "TaxLineDetail"
SUBTOTAL_LINE = "SubTotalLineDetail"


def _to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT)


def _qbo_date(value: Optional[datetime]) -> Optional[str]:
    return value.date().isoformat() if value else None


class PayloadTransformer:
    """Builds QuickBooks create payloads from local invoices and payments."""

    def __init__(self, repository: BaseSyncRepository):
        self.repository = repository

    async def to_remote_payload(
        self, entity: Union[InvoiceRecord, PaymentRecord]
    ) -> Union[QBOInvoicePayload, QBOPaymentPayload]:
        if isinstance(entity, InvoiceRecord):
            return self.invoice_payload(entity)
        return await self.payment_payload(entity)

    def invoice_payload(self, invoice: InvoiceRecord) -> QBOInvoicePayload:
        """
        Map an invoice to a QuickBooks Invoice create body.

        Every line contributes to the submitted total: sales and description
        lines as lines, discounts as a discount line, tax lines folded into
        ``TxnTaxDetail.TotalTax``. Subtotal markers carry no amount of their own.

        Raises:
            PayloadValidationError: unknown line type, no billable lines, or
                the lines do not add up to the recorded invoice total
        """
        lines, sales_total, discount_total, tax_total = self._invoice_lines(
            invoice.line_items
        )

        if not lines:
            raise PayloadValidationError(
                f"Invoice {invoice.label} has no billable line items"
            )

        computed_total = _to_cents(sales_total - discount_total + tax_total)
        recorded_total = _to_cents(invoice.total)
        if computed_total != recorded_total:
            raise PayloadValidationError(
                f"Invoice {invoice.label} line items sum to {computed_total} "
                f"but the recorded total is {recorded_total}",
                data={
                    "lineTotal": str(computed_total),
                    "recordedTotal": str(recorded_total),
                },
            )

        return QBOInvoicePayload(
            CustomerRef=QBORef(value=invoice.customer_id),
            Line=lines,
            TxnTaxDetail=QBOTxnTaxDetail(TotalTax=tax_total) if tax_total else None,
            DocNumber=invoice.doc_number,
            TxnDate=_qbo_date(invoice.invoice_date),
            DueDate=_qbo_date(invoice.due_date),
            PrivateNote=invoice.notes,
        )

    def _invoice_lines(
        self, items: List[LineItem]
    ) -> Tuple[List[QBOLine], Decimal, Decimal, Decimal]:
        lines: List[QBOLine] = []
        sales_total = Decimal("0")
        discount_total = Decimal("0")
        tax_total = Decimal("0")

        for item in items:
            if item.detail_type == SALES_LINE:
                detail = QBOSalesItemLineDetail(
                    ItemRef=(
                        QBORef(value=item.item_ref, name=item.item_name)
                        if item.item_ref
                        else None
                    ),
                    Qty=item.quantity,
                    UnitPrice=item.unit_price,
                    TaxCodeRef=(
                        QBORef(value=item.tax_code_ref) if item.tax_code_ref else None
                    ),
                )
                lines.append(
                    QBOLine(
                        DetailType=SALES_LINE,
                        Amount=item.amount,
                        Description=item.description,
                        SalesItemLineDetail=detail,
                    )
                )
                sales_total += item.amount
            elif item.detail_type == DESCRIPTION_LINE:
                lines.append(
                    QBOLine(
                        DetailType=DESCRIPTION_LINE,
                        Amount=item.amount,
                        Description=item.description,
                    )
                )
                sales_total += item.amount
            elif item.detail_type == DISCOUNT_LINE:
                amount = abs(item.amount)
                lines.append(
                    QBOLine(
                        DetailType=DISCOUNT_LINE,
                        Amount=amount,
                        Description=item.description,
                        DiscountLineDetail=QBODiscountLineDetail(
                            PercentBased=False,
                            DiscountAccountRef=(
                                QBORef(value=item.discount_account_ref)
                                if item.discount_account_ref
                                else None
                            ),
                        ),
                    )
                )
                discount_total += amount
            elif item.detail_type == TAX_LINE:
                tax_total += item.amount
            elif item.detail_type == SUBTOTAL_LINE:
                continue
            else:
                raise PayloadValidationError(
                    f"Unsupported line item type '{item.detail_type}'"
                )

        return lines, sales_total, discount_total, tax_total

    async def payment_payload(self, payment: PaymentRecord) -> QBOPaymentPayload:
        """
        Map a payment to a QuickBooks Payment create body.

        The owning invoice is read live so the customer and the linked remote
        invoice id reflect the invoice's current sync state.
        """
        invoice = await self.repository.get_invoice(payment.invoice_id)
        if not invoice:
            raise PayloadValidationError(
                f"Invoice {payment.invoice_id} for payment {payment.label} not found"
            )

        total = payment.total_amount if payment.total_amount is not None else payment.amount
        if total is None or total <= 0:
            raise PayloadValidationError(
                f"Payment {payment.label} must have a positive amount"
            )

        linked = self._linked_transactions(payment, invoice)
        lines = [QBOLine(Amount=total, LinkedTxn=linked)] if linked else None

        return QBOPaymentPayload(
            TotalAmt=total,
            CustomerRef=QBORef(value=invoice.customer_id),
            Line=lines,
            PaymentRefNum=payment.reference_number,
            TxnDate=_qbo_date(payment.payment_date),
            PrivateNote=payment.notes,
            DepositToAccountRef=(
                QBORef(value=payment.deposit_to_account_ref)
                if payment.deposit_to_account_ref
                else None
            ),
        )

    def _linked_transactions(
        self, payment: PaymentRecord, invoice: InvoiceRecord
    ) -> List[QBOLinkedTxn]:
        if invoice.remote_id:
            if payment.remote_invoice_id and payment.remote_invoice_id != invoice.remote_id:
                logger.info(
                    f"Payment {payment.id} cached invoice id {payment.remote_invoice_id} "
                    f"is stale, using {invoice.remote_id}"
                )
            return [QBOLinkedTxn(TxnId=invoice.remote_id, TxnType="Invoice")]

        if payment.linked_transactions:
            return [self._parse_linked(txn) for txn in payment.linked_transactions]

        if payment.remote_invoice_id:
            return [QBOLinkedTxn(TxnId=payment.remote_invoice_id, TxnType="Invoice")]

        logger.warning(
            f"Payment {payment.id} has no synced invoice to link; "
            "it will be recorded as unapplied"
        )
        return []

    def _parse_linked(self, txn: Dict[str, Any]) -> QBOLinkedTxn:
        txn_id = txn.get("TxnId") or txn.get("txnId")
        if not txn_id:
            raise PayloadValidationError("Linked transaction is missing TxnId")
        return QBOLinkedTxn(
            TxnId=str(txn_id), TxnType=txn.get("TxnType") or txn.get("txnType") or "Invoice"
        )
