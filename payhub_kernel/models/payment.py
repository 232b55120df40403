"""
Module: payhub_kernel.models.payment
Responsibility: The payment and invoice rows the workflow engine reads and,
    for payments, writes the denormalized workflow status fields of.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - Payment amounts are Decimal (Numeric(38, 9)), never float.
    - The engine writes only ``status``, ``workflow_status``,
      ``approved_at`` and ``approved_by`` on a payment.  Every other
      column is owned by the invoicing side of the application.

Failure modes:
    - IntegrityError on duplicate payment reference or invoice number.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from payhub_kernel.db.base import Base, UTCDateTime, UUIDString


class InvoiceModel(Base):
    """Invoice metadata used for template matching and project scoping."""

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    invoice_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    contractor_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"))

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} project={self.project_id}>"

    def to_ref(self):
        """Convert to the frozen slice the visibility rules need."""
        from payhub_kernel.domain.workflow import InvoiceRef

        return InvoiceRef(
            invoice_id=self.id,
            project_id=self.project_id,
            invoice_type_id=self.invoice_type_id,
            contractor_type_id=self.contractor_type_id,
        )


class PaymentModel(Base):
    """A payment against an invoice, subject to approval."""

    __tablename__ = "payments"

    reference: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    workflow_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Payment {self.reference} status={self.status} "
            f"workflow_status={self.workflow_status}>"
        )
