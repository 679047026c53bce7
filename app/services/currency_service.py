from decimal import Decimal

from app.errors import AppError
from app.services.platform_service import PlatformService
from app.utils import quantize

SUPPORTED_CURRENCIES = ("NGN", "USD")


class CurrencyService:
    @staticmethod
    def _check(currency):
        code = (currency or "").strip().upper()
        if code not in SUPPORTED_CURRENCIES:
            raise AppError(f"Unsupported currency: {currency}.", 400)
        return code

    @staticmethod
    def exchange_rate(from_currency, to_currency):
        source = CurrencyService._check(from_currency)
        target = CurrencyService._check(to_currency)
        if source == target:
            return Decimal("1")
        usd_to_ngn = PlatformService.get_decimal("usd_to_ngn_rate")
        if usd_to_ngn <= 0:
            raise AppError("Exchange rate is not configured.", 503)
        if source == "USD":
            return usd_to_ngn
        return Decimal("1") / usd_to_ngn

    @staticmethod
    def convert(amount, from_currency, to_currency):
        rate = CurrencyService.exchange_rate(from_currency, to_currency)
        return quantize(Decimal(str(amount)) * rate)
