import secrets
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.errors import AppError

CENT = Decimal("0.01")


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(raw, label="date/time"):
    if isinstance(raw, datetime):
        return as_utc(raw)
    text = (raw or "").strip() if isinstance(raw, str) else ""
    if not text:
        raise AppError(f"{label.capitalize()} is required.", 400)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise AppError(f"Invalid {label}. Use ISO 8601 format.", 400) from exc


def to_money(value, label="Amount", allow_zero=False):
    try:
        amount = Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise AppError(f"{label} must be a number.", 400) from exc
    if amount < 0 or (amount == 0 and not allow_zero):
        raise AppError(f"{label} must be greater than zero.", 400)
    return amount


def quantize(value):
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def reference_code(prefix, digits=3):
    """Short human-facing reference such as BK-250114042."""
    stamp = utcnow().strftime("%y%m%d")
    return f"{prefix}-{stamp}{secrets.randbelow(10 ** digits):0{digits}d}"


def unique_token(prefix):
    return f"{prefix}-{utcnow().strftime('%y%m%d')}-{secrets.token_hex(6).upper()}"


def to_id(value, label="id", required=True):
    if value in (None, ""):
        if required:
            raise AppError(f"{label} is required.", 400)
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise AppError(f"{label} must be an integer.", 400) from exc
    if number <= 0:
        raise AppError(f"{label} must be an integer.", 400)
    return number
