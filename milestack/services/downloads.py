"""
Assignment download packages.

A student may download their assignment package once they completed the
learning milestones, showed enough comprehension, earned points through
learning and signed the honor code. Every package carries an academic
integrity document.
"""

import json
import logging
import os
from datetime import datetime
from typing import Dict, Any, List

from sqlalchemy.orm import Session

from milestack.core.config import settings
from milestack.core.security import hash_identifier, sign_payload
from milestack.models.ai import AIAssistanceLog, AISession
from milestack.models.assignment import Assignment
from milestack.models.points import SpendCategory
from milestack.models.user import User
from milestack.services import storage
from milestack.services.documents import build_zip, safe_filename
from milestack.services.integrity import integrity_service, format_duration
from milestack.services.points import points_service


logger = logging.getLogger(__name__)

DOWNLOAD_FORMATS = ["clean", "portfolio", "template"]

INTEGRITY_COMMITMENT = (
    "I earned this assistance through demonstrated learning and maintained "
    "academic integrity throughout the process."
)


class DownloadService:
    """Eligibility checks and package generation."""

    def comprehension_score(self, assignment: Assignment) -> int:
        """Average best milestone score, 0 without attempts."""
        scores = [m.best_score for m in assignment.milestones if m.best_score is not None]
        if not scores:
            return 0
        return round(sum(scores) / len(scores))

    def qualify(self, db: Session, user: User, assignment: Assignment) -> Dict[str, Any]:
        total = len(assignment.milestones)
        milestones_done = total > 0 and assignment.completed_milestones == total
        comprehension = self.comprehension_score(assignment)
        meets_comprehension = comprehension >= settings.DOWNLOAD_COMPREHENSION_THRESHOLD
        balance = points_service.get_or_create_balance(db, user.id)
        earned_points = balance.total_earned > 0
        signed = integrity_service.has_signed(db, user.id)
        db.commit()

        missing: List[str] = []
        if not milestones_done:
            missing.append("Complete all learning milestones (100%)")
        if not meets_comprehension:
            missing.append(f"Achieve {settings.DOWNLOAD_COMPREHENSION_THRESHOLD}% comprehension score")
        if not earned_points:
            missing.append("Earn points through demonstrated learning")
        if not signed:
            missing.append("Sign academic integrity acknowledgment")

        return {
            "is_eligible": not missing,
            "requirements": {
                "milestone_completion": milestones_done,
                "comprehension_score": meets_comprehension,
                "points_earned": earned_points,
                "integrity_acknowledgment": signed,
            },
            "missing_requirements": missing,
            "progress": assignment.progress_percentage,
            "comprehension_score": comprehension,
            "total_points_earned": balance.total_earned,
        }

    def integrity_document(self, db: Session, user: User, assignment: Assignment) -> Dict[str, Any]:
        """Academic integrity document for the assignment."""
        logs = db.query(AIAssistanceLog).filter(
            AIAssistanceLog.user_id == user.id,
            AIAssistanceLog.assignment_id == assignment.id
        ).all()
        sessions = db.query(AISession).filter(
            AISession.user_id == user.id,
            AISession.assignment_id == assignment.id
        ).all()
        copilot_seconds = sum(
            ((s.ended_at or datetime.utcnow()) - s.started_at).total_seconds() for s in sessions
        )

        completed = [m.completed_at for m in assignment.milestones if m.completed_at]
        end = max(completed) if completed else datetime.utcnow()
        signatures = integrity_service.get_signatures(db, user.id)
        latest = signatures[0] if signatures else None

        summary = {
            "assignment_title": assignment.title,
            "learning_pathway_completion": f"{assignment.progress_percentage}%",
            "concepts_mastered": assignment.analysis.concepts if assignment.analysis else [],
            "time_invested": format_duration((end - assignment.created_at).total_seconds()),
            "checkpoints_completed": assignment.completed_milestones,
            "comprehension_score": self.comprehension_score(assignment),
            "ai_assistance_summary": {
                "hints_used": len([l for l in logs if l.category == SpendCategory.CONCEPTUAL_HINTS.value]),
                "pseudocode_guidance": len([l for l in logs if l.category == SpendCategory.PSEUDOCODE_GUIDANCE.value]),
                "code_reviews": len([l for l in logs if l.category == SpendCategory.CODE_REVIEW_SESSION.value]),
                "copilot_sessions": len(sessions),
                "copilot_time": format_duration(copilot_seconds),
                "total_points_spent": sum(l.points_spent for l in logs) + sum(s.points_spent for s in sessions),
            },
            "academic_integrity_signature": {
                "signed_at": latest.signed_at.isoformat() if latest else None,
                "ip_address": hash_identifier(latest.ip_address)[:16] if latest and latest.ip_address else None,
                "honor_code_version": latest.version if latest else None,
                "commitment": INTEGRITY_COMMITMENT,
            },
        }
        return {
            "learning_summary": summary,
            "signature": sign_payload(summary),
            "generated_at": datetime.utcnow().isoformat(),
        }

    def _integrity_markdown(self, document: Dict[str, Any]) -> str:
        summary = document["learning_summary"]
        ai = summary["ai_assistance_summary"]
        signature = summary["academic_integrity_signature"]
        concepts = "\n".join(f"- {c}" for c in summary["concepts_mastered"]) or "- None recorded"
        return (
            f"# Academic Integrity Document: {summary['assignment_title']}\n\n"
            "## Learning Progress\n\n"
            f"- **Completion**: {summary['learning_pathway_completion']}\n"
            f"- **Comprehension score**: {summary['comprehension_score']}%\n"
            f"- **Time invested**: {summary['time_invested']}\n"
            f"- **Milestones completed**: {summary['checkpoints_completed']}\n\n"
            f"## Concepts Mastered\n\n{concepts}\n\n"
            "## AI Assistance\n\n"
            f"- **Hints used**: {ai['hints_used']}\n"
            f"- **Pseudocode guidance**: {ai['pseudocode_guidance']}\n"
            f"- **Code reviews**: {ai['code_reviews']}\n"
            f"- **Copilot sessions**: {ai['copilot_sessions']} ({ai['copilot_time']})\n"
            f"- **Total points spent**: {ai['total_points_spent']}\n\n"
            "## Commitment\n\n"
            f"{signature['commitment']}\n\n"
            f"Signed at: {signature['signed_at']}\n\n"
            f"Document signature: `{document['signature']}`\n"
        )

    def _learning_summary(self, assignment: Assignment) -> str:
        lines = [f"# Learning Summary: {assignment.title}", ""]
        for milestone in assignment.milestones:
            score = milestone.best_score
            lines.append(f"## {milestone.milestone_order}. {milestone.title}")
            lines.append("")
            lines.append(f"- Competency: {milestone.competency_requirement}")
            lines.append(f"- Attempts: {len(milestone.attempts)}")
            lines.append(f"- Best score: {score if score is not None else 'n/a'}")
            lines.append("")
        return "\n".join(lines)

    def _format_files(self, assignment: Assignment, document: Dict[str, Any], package_format: str) -> Dict[str, str]:
        summary = document["learning_summary"]
        if package_format == "portfolio":
            ai = summary["ai_assistance_summary"]
            return {
                "README.md": (
                    f"# Portfolio Project: {assignment.title}\n\n"
                    f"{assignment.description or ''}\n\n"
                    "This project was completed with full transparency about AI assistance usage.\n"
                ),
                "ai-assistance-summary.md": (
                    "# AI Assistance Summary\n\n"
                    + "\n".join(f"- {key.replace('_', ' ').title()}: {value}" for key, value in ai.items())
                    + "\n"
                ),
            }
        if package_format == "template":
            objectives = "\n".join(
                f"{m.milestone_order}. {m.competency_requirement}" for m in assignment.milestones
            )
            return {
                "README.md": (
                    f"# Learning Template: {assignment.title}\n\n"
                    "This template keeps the learning structure while requiring independent implementation.\n"
                ),
                "learning-objectives.md": f"# Learning Objectives\n\n{objectives}\n",
            }
        return {"README.md": f"# {assignment.title}\n\n{assignment.description or ''}\n"}

    def generate(self, db: Session, user: User, assignment: Assignment, package_format: str) -> Dict[str, Any]:
        """
        Build the ZIP package. Eligibility must be checked by the caller.

        Returns:
            Dict[str, Any]: content (BytesIO) and filename
        """
        document = self.integrity_document(db, user, assignment)
        files: Dict[str, Any] = self._format_files(assignment, document, package_format)
        files["ACADEMIC_INTEGRITY.md"] = self._integrity_markdown(document)
        files["academic-integrity.json"] = json.dumps(document, indent=2, default=str)
        files["learning-summary.md"] = self._learning_summary(assignment)

        original = storage.read_file(assignment.file_path)
        if original is not None:
            files[f"original/{os.path.basename(assignment.original_filename)}"] = original

        logger.info(f"Generated {package_format} package for assignment {assignment.id} (user {user.id})")
        return {
            "content": build_zip(files),
            "filename": f"{safe_filename(assignment.title, 'assignment')}_{package_format}.zip",
        }


download_service = DownloadService()
