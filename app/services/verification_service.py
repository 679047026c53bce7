from flask import current_app

from app.errors import AppError
from app.extensions import db
from app.models import TeacherDocument, TeacherProfile
from app.services.file_service import FileService
from app.services.notification_service import NotificationService
from app.utils import utcnow

DOCUMENT_TYPES = ("id_card", "certificate", "resume")


class VerificationService:
    @staticmethod
    def _profile(teacher_id):
        profile = TeacherProfile.query.filter_by(user_id=teacher_id).first()
        if not profile:
            raise AppError("Teacher not found.", 404)
        return profile

    @staticmethod
    def get_document(document_id):
        document = db.session.get(TeacherDocument, document_id)
        if not document:
            raise AppError("Document not found.", 404)
        return document

    @staticmethod
    def list_documents(teacher_id=None, status=None):
        query = TeacherDocument.query
        if teacher_id:
            query = query.filter_by(teacher_id=teacher_id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(TeacherDocument.created_at.desc(), TeacherDocument.id.desc()).all()

    @staticmethod
    def upload_document(teacher, document_type, storage):
        if teacher.role != "teacher":
            raise AppError("Only teachers can upload verification documents.", 403)
        if document_type not in DOCUMENT_TYPES:
            raise AppError("Invalid document type.", 400)
        path, original_name = FileService.save_document(storage, current_app.config["UPLOAD_DIR"])
        document = TeacherDocument(
            teacher_id=teacher.id,
            document_type=document_type,
            file_path=path,
            original_name=original_name,
            status="pending",
        )
        db.session.add(document)
        db.session.commit()
        return document

    @staticmethod
    def verify_document(document, admin):
        if document.status == "verified":
            raise AppError("Document already verified.", 409)
        document.status = "verified"
        document.reviewed_by_id = admin.id
        document.reviewed_at = utcnow()
        document.rejection_reason = None
        db.session.commit()
        return document

    @staticmethod
    def reject_document(document, admin, reason):
        reason = (reason or "").strip()
        if not reason:
            raise AppError("A rejection reason is required.", 400)
        document.status = "rejected"
        document.reviewed_by_id = admin.id
        document.reviewed_at = utcnow()
        document.rejection_reason = reason
        NotificationService.push(
            document.teacher_id,
            "Document rejected",
            f"Your {document.document_type.replace('_', ' ')} was rejected: {reason}",
            type="verification",
            related=("teacher_document", document.id),
        )
        db.session.commit()
        return document

    @staticmethod
    def approve_teacher(teacher_id, admin, notes=None):
        profile = VerificationService._profile(teacher_id)
        verified = TeacherDocument.query.filter_by(teacher_id=teacher_id, status="verified").first()
        if not verified:
            raise AppError("At least one verified document is required.", 409)
        profile.verification_status = "verified"
        profile.verified_at = utcnow()
        profile.verification_notes = (notes or "").strip() or None
        NotificationService.push(
            teacher_id,
            "Profile verified",
            "Your teacher profile has been verified. Students can now book you.",
            type="verification",
        )
        db.session.commit()
        current_app.logger.info("Teacher %s verified by admin %s", teacher_id, admin.id)
        return profile

    @staticmethod
    def reject_teacher(teacher_id, admin, reason):
        reason = (reason or "").strip()
        if not reason:
            raise AppError("A rejection reason is required.", 400)
        profile = VerificationService._profile(teacher_id)
        profile.verification_status = "rejected"
        profile.verified_at = None
        profile.verification_notes = reason
        NotificationService.push(
            teacher_id,
            "Verification rejected",
            f"Your teacher verification was rejected: {reason}",
            type="verification",
        )
        db.session.commit()
        current_app.logger.info("Teacher %s rejected by admin %s", teacher_id, admin.id)
        return profile
