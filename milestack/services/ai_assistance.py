"""
Paid AI tutoring: level-based questions and copilot sessions.

Points are only deducted after the agent answered, so a failed call
costs the student nothing.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from milestack.core.config import settings
from milestack.models.ai import AISession, AISessionMessage, AIAssistanceLog, SessionStatus, MessageRole
from milestack.models.assignment import Assignment
from milestack.models.points import SpendCategory
from milestack.models.user import User
from milestack.services.ai_agent import AIAgentClient
from milestack.services.points import points_service, PointsError


logger = logging.getLogger(__name__)


ASSISTANCE_LEVELS: Dict[int, Dict[str, Any]] = {
    1: {
        "cost": 5,
        "category": SpendCategory.CONCEPTUAL_HINTS.value,
        "name": "Conceptual Hints",
        "instructions": (
            "Use Socratic questioning and concept clarification. Give direction such as "
            "'consider the base case first'. NO code solutions, only conceptual understanding."
        ),
    },
    2: {
        "cost": 15,
        "category": SpendCategory.PSEUDOCODE_GUIDANCE.value,
        "name": "Pseudocode Structure",
        "instructions": (
            "Provide the high-level algorithmic approach and logical flow without specific "
            "implementation. Still NO actual code, just logical organization."
        ),
    },
    3: {
        "cost": 25,
        "category": SpendCategory.CODE_REVIEW_SESSION.value,
        "name": "Code Review and Feedback",
        "instructions": (
            "Analyze the student's existing code for improvements. Identify bugs without fixing "
            "them directly and explain best practices."
        ),
    },
    4: {
        "cost": 50,
        "category": SpendCategory.AI_COPILOT.value,
        "name": "AI Copilot",
        "instructions": (
            "Act as a collaborative pair programmer. Guide the student step by step, explaining "
            "every suggestion so they can write the final code themselves."
        ),
    },
}

BASE_PROMPT = (
    "You are an educational AI tutor. Your goal is to help the student learn, never to do "
    "the assignment for them. Keep academic integrity in mind at all times."
)


class AIAssistanceService:
    """Orchestrates agent calls, payment and logging for AI help."""

    def level_info(self, level: int) -> Dict[str, Any]:
        return ASSISTANCE_LEVELS[level]

    def build_prompt(self, question: str, level: int, assignment: Optional[Assignment] = None,
                     context: Optional[str] = None) -> str:
        info = self.level_info(level)
        parts = [BASE_PROMPT, f"LEVEL {level} ASSISTANCE ({info['cost']} points): {info['name']}", info["instructions"]]
        if assignment is not None:
            parts.append(f"Assignment: {assignment.title}")
            if assignment.analysis and assignment.analysis.concepts:
                parts.append(f"Key concepts: {', '.join(assignment.analysis.concepts)}")
        if context:
            parts.append(f"Student context: {context}")
        parts.append(f"Student question: {question}")
        return "\n\n".join(parts)

    def questions_today(self, db: Session, user_id: int) -> int:
        start = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        return db.query(AIAssistanceLog).filter(
            AIAssistanceLog.user_id == user_id,
            AIAssistanceLog.session_id.is_(None),
            AIAssistanceLog.created_at >= start
        ).count()

    async def ask(
        self,
        db: Session,
        user: User,
        agent: AIAgentClient,
        question: str,
        level: int,
        assignment: Optional[Assignment] = None,
        context: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Answer a question at the given assistance level.

        Raises:
            PointsError: When the balance cannot cover the level's cost
            AIAgentError: When the agent fails (nothing is charged)
        """
        info = self.level_info(level)
        balance = points_service.get_or_create_balance(db, user.id)
        if balance.current_balance < info["cost"]:
            raise PointsError(
                f"Insufficient points. You need {info['cost']} points for Level {level} assistance."
            )

        answer = await agent.ask(self.build_prompt(question, level, assignment, context), user_id=str(user.id))

        spend = points_service.spend_points(
            db,
            user.id,
            info["cost"],
            info["category"],
            reason=f"Level {level} AI assistance",
            source_id=str(assignment.id) if assignment else None,
            commit=False,
        )
        log = AIAssistanceLog(
            user_id=user.id,
            assignment_id=assignment.id if assignment else None,
            assistance_level=level,
            category=info["category"],
            question=question,
            response=answer,
            points_spent=info["cost"],
        )
        db.add(log)
        db.commit()
        logger.info(f"User {user.id} used level {level} AI assistance ({info['cost']} points)")

        return {
            "response": answer,
            "level": level,
            "level_name": info["name"],
            "points_deducted": info["cost"],
            "remaining_balance": spend["new_balance"],
            "log_id": log.id,
        }

    def start_session(self, db: Session, user: User, assignment: Optional[Assignment] = None,
                      topic: Optional[str] = None) -> AISession:
        """
        Pay for and open a copilot session.

        Raises:
            PointsError: When the balance is too low
        """
        cost = settings.COPILOT_SESSION_COST
        now = datetime.utcnow()
        session = AISession(
            user_id=user.id,
            assignment_id=assignment.id if assignment else None,
            topic=topic or (assignment.title if assignment else None),
            status=SessionStatus.ACTIVE.value,
            points_spent=cost,
            started_at=now,
            expires_at=now + timedelta(minutes=settings.COPILOT_SESSION_MINUTES),
        )
        points_service.spend_points(
            db,
            user.id,
            cost,
            SpendCategory.AI_COPILOT.value,
            reason=f"AI Copilot Session ({settings.COPILOT_SESSION_MINUTES} minutes)",
            source_id=str(assignment.id) if assignment else None,
            commit=False,
        )
        db.add(session)
        db.flush()
        db.add(AISessionMessage(
            session_id=session.id,
            role=MessageRole.AI.value,
            content=(
                "Hi! I'm your AI copilot for the next "
                f"{settings.COPILOT_SESSION_MINUTES} minutes. What are you working on?"
            ),
        ))
        db.commit()
        db.refresh(session)
        logger.info(f"User {user.id} started copilot session {session.id}")
        return session

    def expire_if_needed(self, db: Session, session: AISession) -> bool:
        """Mark an active session expired once its time is up."""
        if session.status == SessionStatus.ACTIVE.value and session.is_expired:
            session.status = SessionStatus.EXPIRED.value
            session.ended_at = session.expires_at
            db.commit()
            return True
        return session.status == SessionStatus.EXPIRED.value

    async def send_message(self, db: Session, user: User, session: AISession,
                           agent: AIAgentClient, message: str) -> Dict[str, Any]:
        """
        Store a student message and the agent's reply.

        Raises:
            AIAgentError: When the agent fails; the student message is kept
        """
        db.add(AISessionMessage(session_id=session.id, role=MessageRole.STUDENT.value, content=message))
        db.commit()

        history = "\n".join(f"{m.role}: {m.content}" for m in session.messages[-10:])
        prompt = "\n\n".join([
            BASE_PROMPT,
            ASSISTANCE_LEVELS[4]["instructions"],
            f"Topic: {session.topic or 'General programming'}",
            f"Conversation so far:\n{history}",
        ])
        reply = await agent.ask(prompt, user_id=str(user.id), session_id=f"copilot-{session.id}")

        ai_message = AISessionMessage(session_id=session.id, role=MessageRole.AI.value, content=reply)
        db.add(ai_message)
        db.add(AIAssistanceLog(
            user_id=user.id,
            assignment_id=session.assignment_id,
            session_id=session.id,
            assistance_level=4,
            category=SpendCategory.AI_COPILOT.value,
            question=message,
            response=reply,
            points_spent=0,
        ))
        db.commit()
        db.refresh(ai_message)

        remaining = max(0, int((session.expires_at - datetime.utcnow()).total_seconds()))
        return {"message": ai_message.to_dict(), "time_remaining_seconds": remaining}

    def end_session(self, db: Session, session: AISession) -> Dict[str, Any]:
        now = datetime.utcnow()
        if session.status == SessionStatus.ACTIVE.value:
            session.status = SessionStatus.ENDED.value
            session.ended_at = min(now, session.expires_at)
            db.commit()

        ended = session.ended_at or now
        student_messages = len([m for m in session.messages if m.role == MessageRole.STUDENT.value])
        return {
            "session_id": session.id,
            "status": session.status,
            "summary": {
                "total_messages": len(session.messages),
                "student_messages": student_messages,
                "ai_messages": len(session.messages) - student_messages,
                "duration_minutes": round((ended - session.started_at).total_seconds() / 60, 1),
                "points_spent": session.points_spent,
                "topic": session.topic,
            },
        }


ai_assistance_service = AIAssistanceService()
