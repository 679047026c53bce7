from app.models.booking import Booking, BookingHistory, BookingModification
from app.models.message import Conversation, ConversationParticipant, Message
from app.models.notification import Notification
from app.models.payout import PaymentMethod, PayoutRequest
from app.models.platform_setting import PlatformSetting
from app.models.review import TeacherReview
from app.models.teacher import Subject, TeacherAvailability, TeacherDocument, TeacherProfile
from app.models.teaching_session import TeachingSession
from app.models.user import User
from app.models.wallet import StudentWallet, TeacherWallet, WalletTransaction

__all__ = [
    "User",
    "TeacherProfile",
    "Subject",
    "TeacherAvailability",
    "TeacherDocument",
    "Booking",
    "BookingHistory",
    "BookingModification",
    "TeachingSession",
    "StudentWallet",
    "TeacherWallet",
    "WalletTransaction",
    "PaymentMethod",
    "PayoutRequest",
    "Notification",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "TeacherReview",
    "PlatformSetting",
]
