"""
Academic integrity service.

Honor code signatures, per-assignment transparency reports and the
integrity score shown on the dashboard.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from milestack.core.config import settings
from milestack.core.security import sign_payload, generate_secure_token
from milestack.models.ai import AIAssistanceLog
from milestack.models.assignment import Assignment, LearningMilestone, MilestoneAttempt, MilestoneStatus
from milestack.models.integrity import HonorCodeSignature, IntegrityReport
from milestack.models.pathway import CheckpointAttempt, AttemptStatus
from milestack.models.points import UserPoints, FraudDetectionLog, FraudAction
from milestack.models.user import User


logger = logging.getLogger(__name__)


HONOR_CODE_SECTIONS: Dict[str, Any] = {
    "preamble": (
        "Milestack is built on academic integrity and ethical learning. Real learning happens "
        "when students engage with the material themselves."
    ),
    "student_responsibilities": [
        "All work submitted must be your own original work",
        "Use AI assistance as a learning tool, not a shortcut",
        "Clearly document all sources and collaboration",
        "Report any violations you witness",
        "Maintain respectful and inclusive interactions",
    ],
    "ai_guidelines": {
        "acceptable_uses": [
            "Asking for conceptual explanations",
            "Requesting code reviews and feedback",
            "Getting help with debugging",
            "Understanding error messages",
            "Exploring alternative approaches",
        ],
        "prohibited_uses": [
            "Submitting AI-generated code as your own",
            "Using AI to complete entire assignments",
            "Bypassing learning objectives",
            "Misrepresenting AI assistance as original work",
        ],
    },
    "consequences": [
        "Assignment failure",
        "Academic probation",
        "Loss of platform access",
        "Notification to academic institution",
    ],
    "appeals": [
        "Submit a written appeal within 7 days",
        "Review by an independent committee",
        "Final decision within 14 days",
    ],
}


def honor_code_document() -> Dict[str, Any]:
    """The honor code students sign, stamped with the current version."""
    return {
        "title": "Academic Integrity Honor Code",
        "version": settings.HONOR_CODE_VERSION,
        "content": HONOR_CODE_SECTIONS,
        "digital_signature": {
            "required": True,
            "description": (
                "By signing you confirm that you have read, understood and agree to abide by this honor code."
            ),
        },
    }


def format_duration(seconds: float) -> str:
    """Human readable duration such as ``2h 15m``."""
    minutes = int(seconds // 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class IntegrityService:
    """Honor code, transparency reports and integrity scoring."""

    TRANSPARENCY_BASE = 50
    TRANSPARENCY_PER_REPORT = 10
    VIOLATION_PENALTY = 20
    UNSIGNED_COMPLIANCE_CAP = 70
    ENGAGEMENT_PER_ITEM = 10

    # ------------------------------------------------------------ honor code

    def sign_honor_code(
        self,
        db: Session,
        user: User,
        assignment_id: Optional[int] = None,
        institution: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> HonorCodeSignature:
        """Record an HMAC-signed honor code acceptance. Commits."""
        signed_at = datetime.utcnow()
        signature = sign_payload({
            "user_id": user.id,
            "assignment_id": assignment_id,
            "version": settings.HONOR_CODE_VERSION,
            "timestamp": signed_at.isoformat(),
        })
        record = HonorCodeSignature(
            user_id=user.id,
            assignment_id=assignment_id,
            signature=signature,
            version=settings.HONOR_CODE_VERSION,
            institution=institution,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            is_active=True,
            signed_at=signed_at,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        logger.info(f"User {user.id} signed honor code v{settings.HONOR_CODE_VERSION}")
        return record

    def get_signatures(self, db: Session, user_id: int) -> List[HonorCodeSignature]:
        return db.query(HonorCodeSignature).filter(
            HonorCodeSignature.user_id == user_id,
            HonorCodeSignature.is_active.is_(True)
        ).order_by(HonorCodeSignature.signed_at.desc()).all()

    def has_signed(self, db: Session, user_id: int) -> bool:
        return db.query(HonorCodeSignature).filter(
            HonorCodeSignature.user_id == user_id,
            HonorCodeSignature.is_active.is_(True)
        ).count() > 0

    def policy_violations(self, db: Session, user_id: int) -> int:
        return db.query(FraudDetectionLog).filter(
            FraudDetectionLog.user_id == user_id,
            FraudDetectionLog.action_taken.in_([FraudAction.FLAG.value, FraudAction.BLOCK.value])
        ).count()

    # ------------------------------------------------------------ reports

    def build_report(self, db: Session, user: User, assignment: Assignment) -> Dict[str, Any]:
        """
        Transparency report for one assignment.

        Covers milestone attempts, AI assistance used on the assignment and
        honor code compliance.
        """
        checkpoints = []
        completed_times = []
        for milestone in assignment.milestones:
            attempts = milestone.attempts
            if milestone.completed_at:
                completed_times.append(milestone.completed_at)
            checkpoints.append({
                "checkpoint": milestone.title,
                "status": milestone.status,
                "attempts": len(attempts),
                "final_score": f"{milestone.best_score}%" if milestone.best_score is not None else "Not attempted",
            })

        assistance = db.query(AIAssistanceLog).filter(
            AIAssistanceLog.user_id == user.id,
            AIAssistanceLog.assignment_id == assignment.id
        ).order_by(AIAssistanceLog.created_at).all()

        completed_at = max(completed_times) if completed_times else None
        end = completed_at or datetime.utcnow()
        signatures = self.get_signatures(db, user.id)

        return {
            "assignment_details": {
                "id": assignment.id,
                "title": assignment.title,
                "course_name": assignment.course_name,
                "uploaded_at": assignment.created_at.isoformat(),
                "completed_at": completed_at.isoformat() if completed_at else None,
                "total_time_invested": format_duration((end - assignment.created_at).total_seconds()),
            },
            "learning_progression": {
                "competency_checkpoints": checkpoints,
                "completed": assignment.completed_milestones,
                "total": len(assignment.milestones),
            },
            "ai_assistance_used": [
                {
                    "timestamp": a.created_at.isoformat(),
                    "level": a.assistance_level,
                    "type": a.category,
                    "points_spent": a.points_spent,
                    "question": a.question,
                }
                for a in assistance
            ],
            "academic_integrity_compliance": {
                "honor_code_acceptances": len(signatures),
                "policy_violations": self.policy_violations(db, user.id),
                "transparency_level": "Full disclosure available",
            },
        }

    def store_report(self, db: Session, user: User, assignment: Assignment,
                     share_with: Optional[str] = None) -> IntegrityReport:
        """Generate, sign and persist a report. Shared reports get a token. Commits."""
        data = self.build_report(db, user, assignment)
        report = IntegrityReport(
            user_id=user.id,
            assignment_id=assignment.id,
            report_data=data,
            signature=sign_payload(data),
        )
        if share_with:
            report.share_token = generate_secure_token(24)
            report.shared_with = share_with
            report.shared_at = datetime.utcnow()
        db.add(report)
        db.commit()
        db.refresh(report)
        return report

    # ------------------------------------------------------------ scoring

    def calculate_score(self, db: Session, user_id: int) -> Dict[str, int]:
        """
        Integrity score components.

        Returns:
            Dict[str, int]: transparency, compliance, learning_engagement, overall
        """
        ai_usage = db.query(AIAssistanceLog).filter(AIAssistanceLog.user_id == user_id).count()
        reports = db.query(IntegrityReport).filter(IntegrityReport.user_id == user_id).count()
        if ai_usage == 0:
            transparency = 100
        else:
            transparency = min(100, self.TRANSPARENCY_BASE + self.TRANSPARENCY_PER_REPORT * reports)

        compliance = max(0, 100 - self.VIOLATION_PENALTY * self.policy_violations(db, user_id))
        if not self.has_signed(db, user_id):
            compliance = min(compliance, self.UNSIGNED_COMPLIANCE_CAP)

        completed_milestones = db.query(LearningMilestone).join(
            Assignment, LearningMilestone.assignment_id == Assignment.id
        ).filter(
            Assignment.user_id == user_id,
            LearningMilestone.status == MilestoneStatus.COMPLETED.value
        ).count()
        passed_checkpoints = db.query(CheckpointAttempt.checkpoint_id).filter(
            CheckpointAttempt.user_id == user_id,
            CheckpointAttempt.status == AttemptStatus.PASSED.value
        ).distinct().count()
        engagement = min(100, self.ENGAGEMENT_PER_ITEM * (completed_milestones + passed_checkpoints))

        return {
            "transparency": transparency,
            "compliance": compliance,
            "learning_engagement": engagement,
            "overall": round((transparency + compliance + engagement) / 3),
        }

    def dashboard(self, db: Session, user: User) -> Dict[str, Any]:
        assignments = db.query(Assignment).filter(Assignment.user_id == user.id).count()
        ai_requests = db.query(AIAssistanceLog).filter(AIAssistanceLog.user_id == user.id).count()
        points = db.query(UserPoints).filter(UserPoints.user_id == user.id).first()
        signatures = self.get_signatures(db, user.id)
        reports = db.query(IntegrityReport).filter(
            IntegrityReport.user_id == user.id
        ).order_by(IntegrityReport.generated_at.desc()).all()

        activity = []
        for log in db.query(AIAssistanceLog).filter(
            AIAssistanceLog.user_id == user.id
        ).order_by(AIAssistanceLog.created_at.desc()).limit(10).all():
            activity.append({
                "type": "ai_assistance",
                "description": f"Level {log.assistance_level} AI assistance ({log.points_spent} points)",
                "timestamp": log.created_at.isoformat(),
            })
        for attempt in db.query(MilestoneAttempt).filter(
            MilestoneAttempt.user_id == user.id
        ).order_by(MilestoneAttempt.created_at.desc()).limit(10).all():
            activity.append({
                "type": "milestone_attempt",
                "description": f"Milestone attempt scored {attempt.final_score}%",
                "timestamp": attempt.created_at.isoformat(),
            })
        for signature in signatures[:5]:
            activity.append({
                "type": "honor_code",
                "description": f"Signed honor code v{signature.version}",
                "timestamp": signature.signed_at.isoformat(),
            })
        activity.sort(key=lambda a: a["timestamp"], reverse=True)

        profile = user.profile
        return {
            "user": {
                "id": user.id,
                "name": user.full_name,
                "email": user.email,
                "institution": profile.institution_name if profile else None,
            },
            "summary": {
                "total_assignments": assignments,
                "ai_assistance_requests": ai_requests,
                "points_earned": points.total_earned if points else 0,
                "points_spent": points.total_spent if points else 0,
                "honor_code_signatures": len(signatures),
                "transparency_reports": len(reports),
            },
            "recent_activity": activity[:10],
            "integrity_score": self.calculate_score(db, user.id),
        }

    def export_record(self, db: Session, user: User) -> Dict[str, Any]:
        """Complete integrity record as a JSON document."""
        return {
            "exported_at": datetime.utcnow().isoformat(),
            "user": {"id": user.id, "name": user.full_name, "email": user.email},
            "honor_code_signatures": [s.to_dict() for s in self.get_signatures(db, user.id)],
            "reports": [
                r.to_dict() for r in db.query(IntegrityReport).filter(IntegrityReport.user_id == user.id).all()
            ],
            "ai_assistance": [
                a.to_dict() for a in db.query(AIAssistanceLog).filter(AIAssistanceLog.user_id == user.id).all()
            ],
            "integrity_score": self.calculate_score(db, user.id),
        }


integrity_service = IntegrityService()
