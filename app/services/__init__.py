from app.services.auth_service import AuthService
from app.services.booking_service import BookingService
from app.services.currency_service import CurrencyService
from app.services.file_service import FileService
from app.services.message_service import MessageService
from app.services.modification_service import ModificationService
from app.services.notification_service import NotificationService
from app.services.payout_service import PayoutService
from app.services.platform_service import PlatformService
from app.services.review_service import ReviewService
from app.services.session_service import SessionService
from app.services.teacher_service import TeacherService
from app.services.verification_service import VerificationService
from app.services.wallet_service import WalletService

__all__ = [
    "AuthService",
    "BookingService",
    "CurrencyService",
    "FileService",
    "MessageService",
    "ModificationService",
    "NotificationService",
    "PayoutService",
    "PlatformService",
    "ReviewService",
    "SessionService",
    "TeacherService",
    "VerificationService",
    "WalletService",
]
