from app.extensions import db
from app.models.base import MoneyType, PKType, TimestampMixin
from app.utils import as_utc

PAYMENT_METHOD_TYPES = ("bank_transfer", "paypal", "mobile_money")


class PaymentMethod(TimestampMixin, db.Model):
    __tablename__ = "payment_methods"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    user_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(24), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    user = db.relationship("User", back_populates="payment_methods")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "details": self.details or {},
            "is_default": self.is_default,
            "is_active": self.is_active,
        }


class PayoutRequest(TimestampMixin, db.Model):
    __tablename__ = "payout_requests"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    request_uuid = db.Column(db.String(40), nullable=False, unique=True, index=True)
    teacher_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = db.Column(MoneyType, nullable=False)
    fee_amount = db.Column(MoneyType, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="NGN")
    exchange_rate_used = db.Column(db.Numeric(14, 6), nullable=True)
    payment_method = db.Column(db.String(24), nullable=False)
    payment_details = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    request_date = db.Column(db.Date, nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    # Withdrawal ledger row, set on approval.
    transaction_id = db.Column(PKType, nullable=True)

    teacher = db.relationship("User", foreign_keys=[teacher_id])

    __table_args__ = (
        db.Index("ix_payout_teacher_status", "teacher_id", "status"),
        db.CheckConstraint("amount > 0", name="ck_payout_amount_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "request_uuid": self.request_uuid,
            "teacher_id": self.teacher_id,
            "amount": str(self.amount),
            "fee_amount": str(self.fee_amount),
            "currency": self.currency,
            "payment_method": self.payment_method,
            "payment_details": self.payment_details or {},
            "status": self.status,
            "request_date": self.request_date.isoformat(),
            "processed_at": as_utc(self.processed_at).isoformat() if self.processed_at else None,
            "notes": self.notes,
            "transaction_id": self.transaction_id,
        }
