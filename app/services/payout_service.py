from datetime import datetime, time, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from app.errors import AppError
from app.extensions import db
from app.models import PaymentMethod, PayoutRequest, TeacherWallet, User, WalletTransaction
from app.models.payout import PAYMENT_METHOD_TYPES
from app.services.currency_service import CurrencyService
from app.services.notification_service import NotificationService
from app.services.platform_service import PlatformService
from app.services.wallet_service import WalletService
from app.utils import CENT, quantize, to_money, unique_token, utcnow

REQUIRED_DETAILS = {
    "bank_transfer": ("bank_name", "account_number", "account_name"),
    "mobile_money": ("provider", "mobile_number"),
    "paypal": ("email",),
}

PROCESSING_TIMES = {
    "bank_transfer": "1-3 business days",
    "mobile_money": "Instant",
    "paypal": "Instant",
}


class PayoutService:
    @staticmethod
    def _check_method(method):
        method = (method or "").strip().lower()
        if method not in PAYMENT_METHOD_TYPES:
            raise AppError("Unsupported payment method.", 400)
        return method

    @staticmethod
    def calculate_fee(method, amount):
        method = PayoutService._check_method(method)
        fee_type = PlatformService.get_setting(f"{method}_fee_type")
        fee_amount = PlatformService.get_decimal(f"{method}_fee_amount")
        if fee_type == "percentage":
            return (Decimal(str(amount)) * fee_amount / Decimal("100")).quantize(CENT)
        return quantize(fee_amount)

    @staticmethod
    def _withdrawn_since(teacher_id, moment):
        total = (
            db.session.query(func.coalesce(func.sum(WalletTransaction.amount), 0))
            .filter(WalletTransaction.user_id == teacher_id)
            .filter(WalletTransaction.transaction_type == "withdrawal")
            .filter(WalletTransaction.status == "completed")
            .filter(WalletTransaction.created_at >= moment)
            .scalar()
        )
        return quantize(total)

    @staticmethod
    def validate_limits(teacher, amount, now=None):
        now = now or utcnow()
        amount = quantize(amount)
        errors = []

        minimum = PlatformService.get_decimal("min_withdrawal_amount")
        if amount < minimum:
            errors.append(f"Minimum withdrawal amount is NGN {minimum:,.2f}.")

        day_start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
        daily_limit = PlatformService.get_decimal("daily_withdrawal_limit")
        today = PayoutService._withdrawn_since(teacher.id, day_start)
        if today + amount > daily_limit:
            errors.append(f"Daily withdrawal limit exceeded. Remaining: NGN {max(daily_limit - today, 0):,.2f}.")

        monthly_limit = PlatformService.get_decimal("monthly_withdrawal_limit")
        month = PayoutService._withdrawn_since(teacher.id, day_start.replace(day=1))
        if month + amount > monthly_limit:
            errors.append(f"Monthly withdrawal limit exceeded. Remaining: NGN {max(monthly_limit - month, 0):,.2f}.")
        return errors

    @staticmethod
    def calculator(method, amount, currency="NGN"):
        method = PayoutService._check_method(method)
        value = to_money(amount)
        fee = PayoutService.calculate_fee(method, value)
        amount_ngn = CurrencyService.convert(value, currency, "NGN")
        fee_ngn = CurrencyService.convert(fee, currency, "NGN")
        return {
            "method": method,
            "currency": currency.upper(),
            "amount": str(value),
            "fee": str(fee),
            "net_amount": str(value - fee),
            "amount_ngn": str(amount_ngn),
            "fee_ngn": str(fee_ngn),
            "net_amount_ngn": str(amount_ngn - fee_ngn),
            "processing_time": PROCESSING_TIMES[method],
        }

    @staticmethod
    def _validate_details(method, details):
        details = details if isinstance(details, dict) else {}
        missing = [key for key in REQUIRED_DETAILS[method] if not str(details.get(key) or "").strip()]
        if missing:
            raise AppError(f"Missing payment details: {', '.join(missing)}.", 400)
        return {key: str(value).strip() for key, value in details.items() if value is not None}

    @staticmethod
    def add_payment_method(user, method_type, details, make_default=False):
        if user.role != "teacher":
            raise AppError("Only teachers can add payout methods.", 403)
        method_type = PayoutService._check_method(method_type)
        clean = PayoutService._validate_details(method_type, details)
        has_any = user.payment_methods.filter_by(is_active=True).first() is not None
        is_default = bool(make_default) or not has_any
        if is_default:
            PaymentMethod.query.filter_by(user_id=user.id).update({"is_default": False})
        method = PaymentMethod(user_id=user.id, type=method_type, details=clean, is_default=is_default, is_active=True)
        db.session.add(method)
        db.session.commit()
        return method

    @staticmethod
    def list_payment_methods(user):
        return (
            user.payment_methods.filter_by(is_active=True)
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.id.asc())
            .all()
        )

    @staticmethod
    def create_request(teacher, amount, method=None, currency="NGN", payment_method_id=None, notes=None, details=None):
        if teacher.role != "teacher":
            raise AppError("Only teachers can request payouts.", 403)

        saved_method = None
        if payment_method_id is not None:
            saved_method = PaymentMethod.query.filter_by(id=payment_method_id, user_id=teacher.id, is_active=True).first()
            if not saved_method:
                raise AppError("Payment method not found.", 404)
            method = saved_method.type
        method = PayoutService._check_method(method)
        payment_details = saved_method.details if saved_method else PayoutService._validate_details(method, details)

        value = to_money(amount)
        currency = (currency or "NGN").strip().upper()
        amount_ngn = CurrencyService.convert(value, currency, "NGN")

        errors = PayoutService.validate_limits(teacher, amount_ngn)
        if errors:
            raise AppError(" ".join(errors), 400)

        fee_ngn = CurrencyService.convert(PayoutService.calculate_fee(method, value), currency, "NGN")
        net_ngn = amount_ngn - fee_ngn
        if net_ngn <= 0:
            raise AppError("Amount does not cover the withdrawal fee.", 400)

        WalletService.hold_for_payout(teacher.id, net_ngn)
        payout = PayoutRequest(
            request_uuid=unique_token("PR"),
            teacher_id=teacher.id,
            amount=net_ngn,
            fee_amount=fee_ngn,
            currency=currency,
            exchange_rate_used=CurrencyService.exchange_rate(currency, "NGN"),
            payment_method=method,
            payment_details=payment_details,
            status="pending",
            request_date=utcnow().date(),
            notes=(notes or "").strip() or None,
        )
        db.session.add(payout)
        db.session.flush()

        for (admin_id,) in User.query.filter_by(role="admin", is_active_user=True).with_entities(User.id).all():
            NotificationService.push(
                admin_id,
                "New payout request",
                f"{teacher.full_name} requested a payout of NGN {net_ngn:,.2f}.",
                type="payout_request",
                related=("payout_request", payout.id),
            )
        db.session.commit()
        current_app.logger.info(
            "Payout requested uuid=%s teacher=%s net=%s fee=%s method=%s",
            payout.request_uuid,
            teacher.id,
            net_ngn,
            fee_ngn,
            method,
        )
        return payout

    @staticmethod
    def get(payout_id):
        payout = db.session.get(PayoutRequest, payout_id)
        if not payout:
            raise AppError("Payout request not found.", 404)
        return payout

    @staticmethod
    def list_for_teacher(teacher_id, page=1, per_page=20):
        return (
            PayoutRequest.query.filter_by(teacher_id=teacher_id)
            .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
            .paginate(page=page, per_page=per_page, error_out=False)
        )

    @staticmethod
    def admin_list(status=None, page=1, per_page=20):
        query = PayoutRequest.query
        if status:
            query = query.filter_by(status=status)
        return query.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )

    @staticmethod
    def approve(payout, admin):
        if payout.status != "pending":
            raise AppError("Only pending payouts can be approved.", 409)
        tx = WalletService.settle_payout(
            payout.teacher_id,
            payout.amount,
            payout.id,
            meta={"request_uuid": payout.request_uuid, "method": payout.payment_method},
        )
        payout.status = "approved"
        payout.processed_at = utcnow()
        payout.processed_by_id = admin.id
        payout.transaction_id = tx.id
        NotificationService.push(
            payout.teacher_id,
            "Payout approved",
            f"Your payout request {payout.request_uuid} was approved.",
            type="payout_approved",
            related=("payout_request", payout.id),
        )
        db.session.commit()
        current_app.logger.info("Payout approved uuid=%s admin=%s tx=%s", payout.request_uuid, admin.id, tx.id)
        return payout

    @staticmethod
    def reject(payout, admin, reason=None):
        if payout.status != "pending":
            raise AppError("Only pending payouts can be rejected.", 409)
        reason = (reason or "").strip()
        if not reason:
            raise AppError("A rejection reason is required.", 400)
        WalletService.release_payout_hold(payout.teacher_id, payout.amount)
        payout.status = "rejected"
        payout.processed_at = utcnow()
        payout.processed_by_id = admin.id
        payout.notes = reason
        NotificationService.push(
            payout.teacher_id,
            "Payout rejected",
            f"Your payout request {payout.request_uuid} was rejected: {reason}",
            type="payout_rejected",
            related=("payout_request", payout.id),
        )
        db.session.commit()
        current_app.logger.info("Payout rejected uuid=%s admin=%s", payout.request_uuid, admin.id)
        return payout

    @staticmethod
    def cancel(payout, teacher):
        if payout.teacher_id != teacher.id:
            raise AppError("Payout request not found.", 404)
        if payout.status != "pending":
            raise AppError("Only pending payouts can be cancelled.", 409)
        WalletService.release_payout_hold(payout.teacher_id, payout.amount)
        payout.status = "cancelled"
        payout.processed_at = utcnow()
        db.session.commit()
        return payout

    @staticmethod
    def mark_paid(payout, admin):
        if payout.status != "approved":
            raise AppError("Only approved payouts can be marked paid.", 409)
        payout.status = "paid"
        payout.processed_at = utcnow()
        payout.processed_by_id = admin.id
        NotificationService.push(
            payout.teacher_id,
            "Payout sent",
            f"Your payout {payout.request_uuid} has been paid.",
            type="payout_paid",
            related=("payout_request", payout.id),
        )
        db.session.commit()
        return payout

    @staticmethod
    def process_auto_payouts():
        threshold = PlatformService.get_decimal("auto_payout_threshold")
        if threshold <= 0:
            return {"processed": 0, "failed": 0}

        busy = db.session.query(PayoutRequest.teacher_id).filter(PayoutRequest.status.in_(["pending", "approved"]))
        wallets = (
            TeacherWallet.query.filter(TeacherWallet.balance >= threshold)
            .filter(~TeacherWallet.user_id.in_(busy))
            .all()
        )
        processed = failed = 0
        for wallet in wallets:
            teacher = wallet.user
            method = (
                teacher.payment_methods.filter_by(is_active=True)
                .order_by(PaymentMethod.is_default.desc(), PaymentMethod.id.asc())
                .first()
            )
            if not method:
                continue
            try:
                PayoutService.create_request(
                    teacher,
                    quantize(wallet.balance),
                    currency="NGN",
                    payment_method_id=method.id,
                    notes="Automatic payout",
                )
                processed += 1
            except AppError as exc:
                db.session.rollback()
                failed += 1
                current_app.logger.warning("Auto payout failed teacher=%s: %s", teacher.id, exc.message)
        current_app.logger.info("Auto payouts processed=%s failed=%s", processed, failed)
        return {"processed": processed, "failed": failed}
