"""Wallet balances and the unified transaction ledger.

The primitives here (debit, refund, credit_earnings, the payout hold moves)
flush but never commit, so a booking or payout operation can bundle the
balance change with its own rows. ``fund_wallet`` and ``admin_adjustment``
are complete operations and commit.
"""
from decimal import Decimal, InvalidOperation

from flask import current_app

from app.errors import AppError
from app.extensions import db
from app.models import StudentWallet, TeacherWallet, User, WalletTransaction
from app.services.platform_service import PlatformService
from app.utils import CENT, quantize, to_money, unique_token, utcnow

SPENDING_ROLES = {"student", "guardian"}


class WalletService:
    @staticmethod
    def student_wallet(user_id, lock=False):
        query = StudentWallet.query.filter_by(user_id=user_id)
        if lock:
            query = query.with_for_update()
        wallet = query.first()
        if wallet:
            return wallet
        user = db.session.get(User, user_id)
        if not user or user.role not in SPENDING_ROLES:
            raise AppError("Spending wallet not found.", 404)
        wallet = StudentWallet(user_id=user_id, balance=0, total_spent=0, total_refunded=0)
        db.session.add(wallet)
        db.session.flush()
        return wallet

    @staticmethod
    def teacher_wallet(user_id, lock=False):
        query = TeacherWallet.query.filter_by(user_id=user_id)
        if lock:
            query = query.with_for_update()
        wallet = query.first()
        if wallet:
            return wallet
        user = db.session.get(User, user_id)
        if not user or user.role != "teacher":
            raise AppError("Teacher wallet not found.", 404)
        wallet = TeacherWallet(user_id=user_id, balance=0, total_earned=0, total_withdrawn=0, pending_payouts=0)
        db.session.add(wallet)
        db.session.flush()
        return wallet

    @staticmethod
    def wallet_for(user):
        if user.role == "teacher":
            return WalletService.teacher_wallet(user.id)
        return WalletService.student_wallet(user.id)

    @staticmethod
    def _record(user_id, wallet_type, transaction_type, amount, description, **links):
        row = WalletTransaction(
            transaction_uuid=unique_token("TX"),
            user_id=user_id,
            wallet_type=wallet_type,
            transaction_type=transaction_type,
            amount=amount,
            currency="NGN",
            description=description,
            status="completed",
            reference=links.pop("reference", None),
            booking_id=links.pop("booking_id", None),
            session_id=links.pop("session_id", None),
            payout_request_id=links.pop("payout_request_id", None),
            meta=links.pop("meta", None),
        )
        db.session.add(row)
        db.session.flush()
        return row

    @staticmethod
    def fund_wallet(user, amount, reference=None):
        if user.role not in SPENDING_ROLES:
            raise AppError("Only students and guardians can fund a wallet.", 403)
        value = to_money(amount)
        wallet = WalletService.student_wallet(user.id, lock=True)
        wallet.balance = quantize(wallet.balance) + value
        tx = WalletService._record(
            user.id, "student", "credit", value, "Wallet funding", reference=(reference or "").strip() or None
        )
        db.session.commit()
        current_app.logger.info("Wallet funded user=%s amount=%s tx=%s", user.id, value, tx.transaction_uuid)
        return tx

    @staticmethod
    def debit(user_id, amount, description, booking_id=None):
        value = to_money(amount)
        wallet = WalletService.student_wallet(user_id, lock=True)
        if quantize(wallet.balance) < value:
            raise AppError("Insufficient wallet balance.", 402)
        wallet.balance = quantize(wallet.balance) - value
        wallet.total_spent = quantize(wallet.total_spent) + value
        return WalletService._record(user_id, "student", "debit", value, description, booking_id=booking_id)

    @staticmethod
    def refund(user_id, amount, description, booking_id=None):
        value = to_money(amount)
        wallet = WalletService.student_wallet(user_id, lock=True)
        wallet.balance = quantize(wallet.balance) + value
        wallet.total_refunded = quantize(wallet.total_refunded) + value
        return WalletService._record(user_id, "student", "refund", value, description, booking_id=booking_id)

    @staticmethod
    def credit_earnings(teacher_id, amount, description, session_id=None, meta=None):
        value = to_money(amount)
        wallet = WalletService.teacher_wallet(teacher_id, lock=True)
        wallet.balance = quantize(wallet.balance) + value
        wallet.total_earned = quantize(wallet.total_earned) + value
        return WalletService._record(
            teacher_id, "teacher", "session_payment", value, description, session_id=session_id, meta=meta
        )

    @staticmethod
    def hold_for_payout(teacher_id, amount):
        value = to_money(amount)
        wallet = WalletService.teacher_wallet(teacher_id, lock=True)
        if quantize(wallet.balance) < value:
            raise AppError("Insufficient balance for payout request.", 402)
        wallet.balance = quantize(wallet.balance) - value
        wallet.pending_payouts = quantize(wallet.pending_payouts) + value
        db.session.flush()
        return wallet

    @staticmethod
    def release_payout_hold(teacher_id, amount):
        value = to_money(amount)
        wallet = WalletService.teacher_wallet(teacher_id, lock=True)
        if quantize(wallet.pending_payouts) < value:
            raise AppError("Insufficient pending payouts to restore.", 409)
        wallet.balance = quantize(wallet.balance) + value
        wallet.pending_payouts = quantize(wallet.pending_payouts) - value
        db.session.flush()
        return wallet

    @staticmethod
    def settle_payout(teacher_id, amount, payout_request_id, meta=None):
        value = to_money(amount)
        wallet = WalletService.teacher_wallet(teacher_id, lock=True)
        if quantize(wallet.pending_payouts) < value:
            raise AppError("Insufficient pending payouts.", 409)
        wallet.pending_payouts = quantize(wallet.pending_payouts) - value
        wallet.total_withdrawn = quantize(wallet.total_withdrawn) + value
        return WalletService._record(
            teacher_id,
            "teacher",
            "withdrawal",
            value,
            "Payout approved",
            payout_request_id=payout_request_id,
            meta=meta,
        )

    @staticmethod
    def admin_adjustment(user, amount, reason, admin):
        try:
            signed = quantize(Decimal(str(amount)))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise AppError("Amount must be a number.", 400) from exc
        if signed == 0:
            raise AppError("Adjustment amount cannot be zero.", 400)
        reason = (reason or "").strip()
        if not reason:
            raise AppError("A reason is required for adjustments.", 400)

        if user.role == "teacher":
            wallet, wallet_type = WalletService.teacher_wallet(user.id, lock=True), "teacher"
        elif user.role in SPENDING_ROLES:
            wallet, wallet_type = WalletService.student_wallet(user.id, lock=True), "student"
        else:
            raise AppError("This user has no wallet.", 400)

        new_balance = quantize(wallet.balance) + signed
        if new_balance < 0:
            raise AppError("Adjustment would make the balance negative.", 409)
        wallet.balance = new_balance
        tx = WalletService._record(
            user.id,
            wallet_type,
            "adjustment",
            abs(signed),
            reason[:255],
            meta={"direction": "credit" if signed > 0 else "debit", "admin_id": admin.id},
        )
        db.session.commit()
        current_app.logger.info(
            "Wallet adjustment user=%s amount=%s admin=%s tx=%s", user.id, signed, admin.id, tx.transaction_uuid
        )
        return tx

    @staticmethod
    def history(user_id, page=1, per_page=20, transaction_type=None):
        query = WalletTransaction.query.filter_by(user_id=user_id)
        if transaction_type:
            query = query.filter_by(transaction_type=transaction_type)
        return query.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )

    @staticmethod
    def pay_session(session):
        """Credit the teacher for a completed session, net of commission. Runs once per session."""
        if session.earnings_credited_at is not None:
            raise AppError("Session earnings already credited.", 409)
        booking = session.booking
        gross = quantize(booking.amount_ngn)
        commission_pct = PlatformService.get_decimal("commission_pct")
        commission = (gross * commission_pct / Decimal("100")).quantize(CENT)
        net = gross - commission
        session.earnings_credited_at = utcnow()
        if net <= 0:
            db.session.flush()
            return None
        tx = WalletService.credit_earnings(
            session.teacher_id,
            net,
            f"Session payment for {session.session_uuid}",
            session_id=session.id,
            meta={"gross": str(gross), "commission_pct": str(commission_pct), "commission": str(commission)},
        )
        tx.booking_id = booking.id
        current_app.logger.info(
            "Session earnings credited teacher=%s session=%s net=%s", session.teacher_id, session.session_uuid, net
        )
        return tx
