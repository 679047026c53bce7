from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.services import MessageService
from app.utils import to_id

api_message_bp = Blueprint("api_message", __name__)


@api_message_bp.get("/conversations")
@login_required
def list_conversations():
    return jsonify(MessageService.list_conversations(current_user))


@api_message_bp.post("/conversations")
@login_required
def start_conversation():
    payload = request.get_json(silent=True) or {}
    conversation, created = MessageService.get_or_create_conversation(
        current_user, to_id(payload.get("recipient_id"), "recipient_id")
    )
    if payload.get("body"):
        MessageService.send_message(current_user, conversation.id, payload.get("body"))
    return jsonify({"id": conversation.id, "participant_ids": sorted(conversation.participant_ids)}), (
        201 if created else 200
    )


@api_message_bp.get("/conversations/<int:conversation_id>")
@login_required
def conversation_messages(conversation_id):
    conversation = MessageService.get_for_user(conversation_id, current_user)
    rows = MessageService.list_messages(conversation, current_user)
    MessageService.mark_conversation_read(conversation, current_user)
    return jsonify([row.to_dict() for row in rows])


@api_message_bp.post("/conversations/<int:conversation_id>")
@login_required
def send_message(conversation_id):
    payload = request.get_json(silent=True) or {}
    message = MessageService.send_message(current_user, conversation_id, payload.get("body"))
    return jsonify(message.to_dict()), 201
