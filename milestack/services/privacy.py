"""
Privacy and GDPR compliance service.

Settings and consents are handled inline; data exports and deletions are
recorded as requests and processed by background tasks with their own
database session.
"""

import csv
import io
import json
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from milestack.core.config import settings
from milestack.core.database import SessionLocal
from milestack.core.security import generate_secure_token, get_password_hash
from milestack.models.achievement import Achievement
from milestack.models.ai import AISession, AIAssistanceLog
from milestack.models.assignment import Assignment
from milestack.models.integrity import HonorCodeSignature, IntegrityReport
from milestack.models.pathway import CheckpointAttempt, PathwayProgress
from milestack.models.points import UserPoints, PointTransaction, FraudDetectionLog
from milestack.models.privacy import (
    PrivacySettings, ConsentRecord, DataExportRequest, DataDeletionRequest,
    PrivacyAuditLog, RequestStatus, ExportFormat
)
from milestack.models.user import User, UserSession, UserProfile
from milestack.services import storage
from milestack.services.documents import build_pdf


logger = logging.getLogger(__name__)

DATA_CATEGORIES = ["profile", "assignments", "points", "achievements", "ai_history", "integrity", "privacy"]
DELETION_CATEGORIES = ["assignments", "ai_history", "points", "all"]

GDPR_RETENTION_DAYS = 365


class PrivacyService:
    """Privacy settings, consent history, exports and deletions."""

    # ------------------------------------------------------------ settings

    def get_settings(self, db: Session, user_id: int) -> PrivacySettings:
        record = db.query(PrivacySettings).filter(PrivacySettings.user_id == user_id).first()
        if record is None:
            record = PrivacySettings(user_id=user_id)
            db.add(record)
            db.commit()
            db.refresh(record)
        return record

    def update_settings(self, db: Session, user_id: int, changes: Dict[str, Any],
                        ip_address: Optional[str] = None) -> PrivacySettings:
        """Apply a partial update and audit it. Commits."""
        record = self.get_settings(db, user_id)
        for field, value in changes.items():
            if field == "gdpr_consent":
                merged = dict(record.gdpr_consent or {})
                merged.update(value)
                record.gdpr_consent = merged
            else:
                setattr(record, field, value)

        self.audit(db, user_id, "settings_updated", {"fields": sorted(changes.keys())}, ip_address)
        db.commit()
        db.refresh(record)
        return record

    def audit(self, db: Session, user_id: int, action: str, details: Optional[Dict[str, Any]] = None,
              ip_address: Optional[str] = None) -> PrivacyAuditLog:
        """Add a privacy audit entry. Does not commit."""
        entry = PrivacyAuditLog(user_id=user_id, action=action, details=details or {}, ip_address=ip_address)
        db.add(entry)
        return entry

    # ------------------------------------------------------------ consent

    def record_consent(self, db: Session, user_id: int, consent_type: str, granted: bool,
                       ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> ConsentRecord:
        """Store a consent decision and mirror it into the GDPR consent map. Commits."""
        record = ConsentRecord(
            user_id=user_id,
            consent_type=consent_type,
            granted=granted,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        db.add(record)

        privacy = self.get_settings(db, user_id)
        consent_map = dict(privacy.gdpr_consent or {})
        consent_map[consent_type] = granted
        privacy.gdpr_consent = consent_map

        self.audit(
            db, user_id,
            "consent_granted" if granted else "consent_withdrawn",
            {"consent_type": consent_type},
            ip_address
        )
        db.commit()
        db.refresh(record)
        return record

    def consent_history(self, db: Session, user_id: int) -> List[ConsentRecord]:
        return db.query(ConsentRecord).filter(
            ConsentRecord.user_id == user_id
        ).order_by(ConsentRecord.created_at.desc(), ConsentRecord.id.desc()).all()

    # ------------------------------------------------------------ export

    def collect_user_data(self, db: Session, user: User, categories: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Gather a user's data by category.

        An empty category list means everything.
        """
        wanted = set(categories or DATA_CATEGORIES)
        data: Dict[str, Any] = {"exported_at": datetime.utcnow().isoformat(), "user_id": user.id}

        if "profile" in wanted:
            data["profile"] = {
                "account": user.to_dict(include_sensitive=True),
                "details": user.profile.to_dict() if user.profile else None,
            }
        if "assignments" in wanted:
            assignments = db.query(Assignment).filter(Assignment.user_id == user.id).all()
            data["assignments"] = [
                {
                    **a.to_dict(),
                    "analysis": a.analysis.to_dict() if a.analysis else None,
                    "milestones": [
                        {**m.to_dict(), "attempt_history": [t.to_dict() for t in m.attempts]}
                        for m in a.milestones
                    ],
                }
                for a in assignments
            ]
        if "points" in wanted:
            balance = db.query(UserPoints).filter(UserPoints.user_id == user.id).first()
            data["points"] = {
                "balance": balance.to_dict() if balance else None,
                "transactions": [
                    t.to_dict() for t in db.query(PointTransaction).filter(
                        PointTransaction.user_id == user.id
                    ).order_by(PointTransaction.created_at).all()
                ],
            }
        if "achievements" in wanted:
            data["achievements"] = [
                a.to_dict() for a in db.query(Achievement).filter(Achievement.user_id == user.id).all()
            ]
        if "ai_history" in wanted:
            sessions = db.query(AISession).filter(AISession.user_id == user.id).all()
            data["ai_history"] = {
                "assistance": [
                    a.to_dict() for a in db.query(AIAssistanceLog).filter(AIAssistanceLog.user_id == user.id).all()
                ],
                "sessions": [
                    {**s.to_dict(), "messages": [m.to_dict() for m in s.messages]} for s in sessions
                ],
            }
        if "integrity" in wanted:
            data["integrity"] = {
                "honor_code_signatures": [
                    s.to_dict() for s in db.query(HonorCodeSignature).filter(HonorCodeSignature.user_id == user.id).all()
                ],
                "reports": [
                    r.to_dict() for r in db.query(IntegrityReport).filter(IntegrityReport.user_id == user.id).all()
                ],
            }
        if "privacy" in wanted:
            data["privacy"] = {
                "settings": self.get_settings(db, user.id).to_dict(),
                "consents": [c.to_dict() for c in self.consent_history(db, user.id)],
            }
        return data

    def _flatten_rows(self, data: Dict[str, Any]) -> List[Dict[str, str]]:
        rows = []

        def walk(prefix: str, value: Any) -> None:
            if isinstance(value, dict):
                for key, item in value.items():
                    walk(f"{prefix}.{key}" if prefix else key, item)
            elif isinstance(value, list):
                for index, item in enumerate(value):
                    walk(f"{prefix}[{index}]", item)
            else:
                category = prefix.split(".")[0].split("[")[0]
                rows.append({"category": category, "field": prefix, "value": "" if value is None else str(value)})

        walk("", data)
        return rows

    def render_export(self, data: Dict[str, Any], export_format: str) -> bytes:
        if export_format == ExportFormat.CSV.value:
            output = io.StringIO()
            writer = csv.DictWriter(output, fieldnames=["category", "field", "value"])
            writer.writeheader()
            writer.writerows(self._flatten_rows(data))
            return output.getvalue().encode("utf-8")

        if export_format == ExportFormat.PDF.value:
            sections = []
            for category, value in data.items():
                if category in ("exported_at", "user_id"):
                    continue
                rows = self._flatten_rows({category: value})
                sections.append((category.replace("_", " ").title(), [f"{r['field']}: {r['value']}" for r in rows]))
            return build_pdf("Personal Data Export", sections)

        return json.dumps(data, indent=2, default=str).encode("utf-8")

    def create_export_request(self, db: Session, user_id: int, export_format: str,
                              categories: List[str], ip_address: Optional[str] = None) -> DataExportRequest:
        request = DataExportRequest(
            user_id=user_id,
            export_format=export_format,
            data_categories=categories,
            status=RequestStatus.PENDING.value,
        )
        db.add(request)
        self.audit(db, user_id, "export_requested", {"format": export_format, "categories": categories}, ip_address)
        db.commit()
        db.refresh(request)
        return request

    def process_export(self, request_id: int) -> None:
        """Background task: build the export file."""
        db = SessionLocal()
        try:
            request = db.query(DataExportRequest).filter(DataExportRequest.id == request_id).first()
            if request is None:
                return
            request.status = RequestStatus.PROCESSING.value
            db.commit()

            user = db.query(User).filter(User.id == request.user_id).first()
            try:
                data = self.collect_user_data(db, user, request.data_categories)
                content = self.render_export(data, request.export_format)
                path = storage.export_path(
                    user.id, f"export_{request.id}_{generate_secure_token(4)}.{request.export_format}"
                )
                with open(path, "wb") as f:
                    f.write(content)
            except (OSError, ValueError) as e:
                logger.error(f"Data export {request_id} failed: {e}")
                request.status = RequestStatus.FAILED.value
                request.error_message = str(e)
                db.commit()
                return

            now = datetime.utcnow()
            request.file_path = path
            request.status = RequestStatus.COMPLETED.value
            request.completed_at = now
            request.expires_at = now + timedelta(days=settings.DATA_EXPORT_EXPIRE_DAYS)
            self.audit(db, user.id, "export_completed", {"request_id": request.id})
            db.commit()
            logger.info(f"Data export {request_id} completed for user {user.id}")
        finally:
            db.close()

    # ------------------------------------------------------------ deletion

    def create_deletion_request(self, db: Session, user_id: int, reason: str,
                                categories: List[str], ip_address: Optional[str] = None) -> DataDeletionRequest:
        request = DataDeletionRequest(
            user_id=user_id,
            reason=reason,
            data_categories=categories,
            status=RequestStatus.PENDING.value,
        )
        db.add(request)
        self.audit(db, user_id, "deletion_requested", {"categories": categories}, ip_address)
        db.commit()
        db.refresh(request)
        return request

    def _delete_assignments(self, db: Session, user_id: int) -> int:
        db.query(IntegrityReport).filter(IntegrityReport.user_id == user_id).delete(synchronize_session=False)
        db.query(AIAssistanceLog).filter(AIAssistanceLog.user_id == user_id).update(
            {AIAssistanceLog.assignment_id: None}, synchronize_session=False
        )
        db.query(AISession).filter(AISession.user_id == user_id).update(
            {AISession.assignment_id: None}, synchronize_session=False
        )
        db.query(HonorCodeSignature).filter(HonorCodeSignature.user_id == user_id).update(
            {HonorCodeSignature.assignment_id: None}, synchronize_session=False
        )
        assignments = db.query(Assignment).filter(Assignment.user_id == user_id).all()
        for assignment in assignments:
            storage.delete_file(assignment.file_path)
            db.delete(assignment)
        return len(assignments)

    def _delete_ai_history(self, db: Session, user_id: int) -> int:
        count = db.query(AIAssistanceLog).filter(AIAssistanceLog.user_id == user_id).delete(synchronize_session=False)
        for session in db.query(AISession).filter(AISession.user_id == user_id).all():
            db.delete(session)
            count += 1
        return count

    def _delete_points(self, db: Session, user_id: int) -> int:
        count = db.query(PointTransaction).filter(PointTransaction.user_id == user_id).delete(synchronize_session=False)
        count += db.query(FraudDetectionLog).filter(FraudDetectionLog.user_id == user_id).delete(synchronize_session=False)
        count += db.query(Achievement).filter(Achievement.user_id == user_id).delete(synchronize_session=False)
        count += db.query(UserPoints).filter(UserPoints.user_id == user_id).delete(synchronize_session=False)
        return count

    def _erase_account(self, db: Session, user: User) -> int:
        user_id = user.id
        count = 0
        for model in (CheckpointAttempt, PathwayProgress, HonorCodeSignature, ConsentRecord, UserSession, UserProfile):
            count += db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)
        for export in db.query(DataExportRequest).filter(DataExportRequest.user_id == user_id).all():
            storage.delete_file(export.file_path)
            export.file_path = None

        user.email = f"deleted-{user_id}-{generate_secure_token(4)}@deleted.invalid"
        user.first_name = "Deleted"
        user.last_name = "User"
        user.hashed_password = get_password_hash(generate_secure_token())
        user.profile_picture = None
        user.profile_data = {}
        user.gdpr_consent = {}
        user.is_active = False
        user.email_verification_token = None
        user.password_reset_token = None
        return count

    def process_deletion(self, request_id: int) -> None:
        """Background task: erase the requested categories."""
        db = SessionLocal()
        try:
            request = db.query(DataDeletionRequest).filter(DataDeletionRequest.id == request_id).first()
            if request is None:
                return
            request.status = RequestStatus.PROCESSING.value
            db.commit()

            user = db.query(User).filter(User.id == request.user_id).first()
            categories = set(request.data_categories or ["all"])
            erase_all = "all" in categories
            counts: Dict[str, int] = {}

            try:
                if erase_all or "assignments" in categories:
                    counts["assignments"] = self._delete_assignments(db, user.id)
                if erase_all or "ai_history" in categories:
                    counts["ai_history"] = self._delete_ai_history(db, user.id)
                if erase_all or "points" in categories:
                    counts["points"] = self._delete_points(db, user.id)
                if erase_all:
                    counts["account"] = self._erase_account(db, user)
                db.flush()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Data deletion {request_id} failed: {e}")
                request.status = RequestStatus.FAILED.value
                request.error_message = str(e)
                db.commit()
                return

            request.deleted_counts = counts
            request.status = RequestStatus.COMPLETED.value
            request.completed_at = datetime.utcnow()
            self.audit(db, user.id, "deletion_completed", {"request_id": request.id, "counts": counts})
            db.commit()
            logger.warning(f"Deleted data for user {user.id}: {counts}")
        finally:
            db.close()

    # ------------------------------------------------------------ compliance

    def compliance_report(self, db: Session, user_id: int) -> Dict[str, Any]:
        """GDPR compliance issues and recommendations for a user."""
        privacy = self.get_settings(db, user_id)
        issues = []
        recommendations = []

        if not (privacy.gdpr_consent or {}).get("dataProcessing"):
            issues.append("No consent for data processing")
            recommendations.append("Grant data processing consent to use the platform's learning features")

        if privacy.data_retention_days > GDPR_RETENTION_DAYS:
            issues.append("Data retention period exceeds GDPR limits")
            recommendations.append(f"Reduce data retention to {GDPR_RETENTION_DAYS} days or less")

        recent = db.query(ConsentRecord).filter(
            ConsentRecord.user_id == user_id,
            ConsentRecord.granted.is_(True)
        ).order_by(ConsentRecord.created_at.desc()).first()
        if recent is None or recent.created_at < datetime.utcnow() - timedelta(days=365):
            issues.append("Consent may be outdated")
            recommendations.append("Review and renew consent for data processing")

        return {
            "compliant": not issues,
            "issues": issues,
            "recommendations": recommendations,
            "settings": privacy.to_dict(),
            "last_consent_at": recent.created_at.isoformat() if recent else None,
        }

    def audit_log(self, db: Session, user_id: int, limit: int = 100) -> List[PrivacyAuditLog]:
        return db.query(PrivacyAuditLog).filter(
            PrivacyAuditLog.user_id == user_id
        ).order_by(PrivacyAuditLog.created_at.desc(), PrivacyAuditLog.id.desc()).limit(limit).all()


privacy_service = PrivacyService()
