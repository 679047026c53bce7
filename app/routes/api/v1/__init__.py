from flask import Blueprint

from app.extensions import csrf
from app.routes.api.v1.admin import api_admin_bp
from app.routes.api.v1.auth import api_auth_bp
from app.routes.api.v1.bookings import api_booking_bp
from app.routes.api.v1.messages import api_message_bp
from app.routes.api.v1.modifications import api_modification_bp
from app.routes.api.v1.notifications import api_notification_bp
from app.routes.api.v1.payouts import api_payout_bp
from app.routes.api.v1.sessions import api_session_bp
from app.routes.api.v1.teachers import api_teacher_bp
from app.routes.api.v1.wallet import api_wallet_bp

api_v1_bp = Blueprint("api_v1", __name__)
api_v1_bp.register_blueprint(api_auth_bp, url_prefix="/auth")
api_v1_bp.register_blueprint(api_teacher_bp, url_prefix="/teachers")
api_v1_bp.register_blueprint(api_booking_bp, url_prefix="/bookings")
api_v1_bp.register_blueprint(api_session_bp, url_prefix="/sessions")
api_v1_bp.register_blueprint(api_modification_bp, url_prefix="/modifications")
api_v1_bp.register_blueprint(api_wallet_bp, url_prefix="/wallet")
api_v1_bp.register_blueprint(api_payout_bp, url_prefix="/payouts")
api_v1_bp.register_blueprint(api_notification_bp, url_prefix="/notifications")
api_v1_bp.register_blueprint(api_message_bp, url_prefix="/messages")
api_v1_bp.register_blueprint(api_admin_bp, url_prefix="/admin")

csrf.exempt(api_v1_bp)
