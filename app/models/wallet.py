from app.extensions import db
from app.models.base import MoneyType, PKType, TimestampMixin
from app.utils import as_utc


class StudentWallet(TimestampMixin, db.Model):
    """Spending wallet, held by students and guardians."""

    __tablename__ = "student_wallets"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    user_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    balance = db.Column(MoneyType, nullable=False, default=0)
    total_spent = db.Column(MoneyType, nullable=False, default=0)
    total_refunded = db.Column(MoneyType, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="NGN")

    user = db.relationship("User", back_populates="student_wallet")

    __table_args__ = (db.CheckConstraint("balance >= 0", name="ck_student_wallet_balance"),)

    def to_dict(self):
        return {
            "type": "student",
            "balance": str(self.balance),
            "total_spent": str(self.total_spent),
            "total_refunded": str(self.total_refunded),
            "currency": self.currency,
        }


class TeacherWallet(TimestampMixin, db.Model):
    __tablename__ = "teacher_wallets"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    user_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    balance = db.Column(MoneyType, nullable=False, default=0)
    total_earned = db.Column(MoneyType, nullable=False, default=0)
    total_withdrawn = db.Column(MoneyType, nullable=False, default=0)
    pending_payouts = db.Column(MoneyType, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="NGN")
    auto_withdrawal_enabled = db.Column(db.Boolean, nullable=False, default=False)
    auto_withdrawal_threshold = db.Column(MoneyType, nullable=True)

    user = db.relationship("User", back_populates="teacher_wallet")

    __table_args__ = (
        db.CheckConstraint("balance >= 0", name="ck_teacher_wallet_balance"),
        db.CheckConstraint("pending_payouts >= 0", name="ck_teacher_wallet_pending"),
    )

    def to_dict(self):
        return {
            "type": "teacher",
            "balance": str(self.balance),
            "total_earned": str(self.total_earned),
            "total_withdrawn": str(self.total_withdrawn),
            "pending_payouts": str(self.pending_payouts),
            "currency": self.currency,
            "auto_withdrawal_enabled": self.auto_withdrawal_enabled,
        }


class WalletTransaction(TimestampMixin, db.Model):
    __tablename__ = "wallet_transactions"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    transaction_uuid = db.Column(db.String(40), nullable=False, unique=True, index=True)
    user_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    wallet_type = db.Column(db.String(16), nullable=False)
    transaction_type = db.Column(db.String(24), nullable=False, index=True)
    amount = db.Column(MoneyType, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="NGN")
    description = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    reference = db.Column(db.String(120), nullable=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True)
    session_id = db.Column(PKType, db.ForeignKey("teaching_sessions.id", ondelete="SET NULL"), nullable=True, index=True)
    payout_request_id = db.Column(PKType, db.ForeignKey("payout_requests.id", ondelete="SET NULL"), nullable=True)
    meta = db.Column(db.JSON, nullable=True)

    __table_args__ = (
        db.Index("ix_wallet_tx_user_type", "user_id", "transaction_type"),
        db.CheckConstraint("amount > 0", name="ck_wallet_tx_amount_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_uuid": self.transaction_uuid,
            "wallet_type": self.wallet_type,
            "transaction_type": self.transaction_type,
            "amount": str(self.amount),
            "currency": self.currency,
            "description": self.description,
            "status": self.status,
            "reference": self.reference,
            "booking_id": self.booking_id,
            "session_id": self.session_id,
            "payout_request_id": self.payout_request_id,
            "meta": self.meta or {},
            "created_at": as_utc(self.created_at).isoformat(),
        }
