from decimal import Decimal, InvalidOperation

from app.errors import AppError
from app.extensions import cache, db
from app.models import PlatformSetting

DEFAULT_SETTINGS = {
    "commission_pct": "10",
    "usd_to_ngn_rate": "1500",
    "min_withdrawal_amount": "500",
    "daily_withdrawal_limit": "500000",
    "monthly_withdrawal_limit": "5000000",
    "bank_transfer_fee_type": "flat",
    "bank_transfer_fee_amount": "100",
    "mobile_money_fee_type": "percentage",
    "mobile_money_fee_amount": "2.5",
    "paypal_fee_type": "percentage",
    "paypal_fee_amount": "3.5",
    "auto_payout_threshold": "50000",
}


def _cache_key(key):
    return f"platform_setting:{key}"


class PlatformService:
    @staticmethod
    def get_setting(key, default=None):
        cached = cache.get(_cache_key(key))
        if cached is not None:
            return cached
        setting = db.session.get(PlatformSetting, key)
        if not setting:
            return default if default is not None else DEFAULT_SETTINGS.get(key)
        cache.set(_cache_key(key), setting.value)
        return setting.value

    @staticmethod
    def get_decimal(key, default=None):
        fallback = default if default is not None else DEFAULT_SETTINGS.get(key, "0")
        raw = PlatformService.get_setting(key, str(fallback))
        try:
            return Decimal(str(raw))
        except (InvalidOperation, ValueError):
            return Decimal(str(fallback))

    @staticmethod
    def all_settings():
        values = dict(DEFAULT_SETTINGS)
        for row in PlatformSetting.query.all():
            values[row.key] = row.value
        return values

    @staticmethod
    def set_setting(key, value, updated_by_id=None):
        if key not in DEFAULT_SETTINGS:
            raise AppError(f"Unknown setting: {key}.", 400)
        if key.endswith("_fee_type"):
            if str(value) not in {"flat", "percentage"}:
                raise AppError("Fee type must be 'flat' or 'percentage'.", 400)
        else:
            try:
                number = Decimal(str(value))
            except (InvalidOperation, ValueError) as exc:
                raise AppError(f"Setting {key} must be numeric.", 400) from exc
            if number < 0:
                raise AppError(f"Setting {key} cannot be negative.", 400)

        setting = db.session.get(PlatformSetting, key)
        if setting:
            setting.value = str(value)
            setting.updated_by_id = updated_by_id
        else:
            setting = PlatformSetting(key=key, value=str(value), updated_by_id=updated_by_id)
            db.session.add(setting)
        db.session.commit()
        cache.delete(_cache_key(key))
        return setting
