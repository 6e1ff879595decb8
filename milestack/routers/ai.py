"""
AI tutoring router for Milestack.

Level-based questions paid with points and timed copilot sessions
proxied to the external AI agent.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.admin import SystemSettings
from milestack.models.ai import AISession, SessionStatus
from milestack.models.user import User
from milestack.routers.assignments import get_owned_assignment
from milestack.routers.auth import get_current_user
from milestack.schemas.ai import AskRequest, SessionStartRequest, SessionMessageRequest
from milestack.services.ai_agent import AIAgentClient, AIAgentError, get_ai_agent
from milestack.services.ai_assistance import ai_assistance_service
from milestack.services.points import PointsError


logger = logging.getLogger(__name__)

router = APIRouter()


def ensure_ai_enabled(db: Session) -> None:
    if not SystemSettings.get_value(db, "enable_ai_assistance", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="AI assistance is currently disabled"
        )


def get_owned_session(db: Session, session_id: int, user: User) -> AISession:
    session = db.query(AISession).filter(AISession.id == session_id).first()
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    if session.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this session"
        )
    return session


def agent_unavailable(e: AIAgentError) -> HTTPException:
    logger.error(f"AI agent request failed: {e}")
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="AI service is temporarily unavailable. No points were charged."
    )


@router.post("/ask")
async def ask_question(
    request_data: AskRequest,
    current_user: User = Depends(get_current_user),
    agent: AIAgentClient = Depends(get_ai_agent),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Ask the AI tutor a question at assistance level 1-4.

    Levels cost 5, 15, 25 and 50 points. Points are deducted only after
    the agent answered.
    """
    if not request_data.question or not request_data.question.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Question is required"
        )

    ensure_ai_enabled(db)

    daily_limit = SystemSettings.get_value(db, "ai_ask_daily_limit", 20)
    if ai_assistance_service.questions_today(db, current_user.id) >= daily_limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Daily AI question limit of {daily_limit} reached. Try again tomorrow."
        )

    assignment = None
    if request_data.assignment_id:
        assignment = get_owned_assignment(db, request_data.assignment_id, current_user)

    try:
        result = await ai_assistance_service.ask(
            db,
            current_user,
            agent,
            request_data.question.strip(),
            request_data.level,
            assignment=assignment,
            context=request_data.context,
        )
    except PointsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except AIAgentError as e:
        db.rollback()
        raise agent_unavailable(e)

    return {"success": True, "data": result}


@router.post("/session/start", status_code=status.HTTP_201_CREATED)
async def start_session(
    request_data: SessionStartRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Open a paid, timed copilot session."""
    ensure_ai_enabled(db)

    assignment = None
    if request_data.assignment_id:
        assignment = get_owned_assignment(db, request_data.assignment_id, current_user)

    try:
        session = ai_assistance_service.start_session(db, current_user, assignment, request_data.topic)
    except PointsError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "success": True,
        "data": {
            "session": session.to_dict(),
            "messages": [m.to_dict() for m in session.messages],
        }
    }


@router.post("/session/{session_id}/message")
async def send_message(
    session_id: int,
    request_data: SessionMessageRequest,
    current_user: User = Depends(get_current_user),
    agent: AIAgentClient = Depends(get_ai_agent),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not request_data.message or not request_data.message.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message is required"
        )

    session = get_owned_session(db, session_id, current_user)

    if ai_assistance_service.expire_if_needed(db, session):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Session has expired"
        )
    if session.status != SessionStatus.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Session has ended"
        )

    try:
        result = await ai_assistance_service.send_message(
            db, current_user, session, agent, request_data.message.strip()
        )
    except AIAgentError as e:
        raise agent_unavailable(e)

    return {"success": True, "data": result}


@router.get("/session/{session_id}/transcript")
async def get_transcript(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    session = get_owned_session(db, session_id, current_user)
    ai_assistance_service.expire_if_needed(db, session)

    return {
        "success": True,
        "data": {
            "session": session.to_dict(),
            "messages": [m.to_dict() for m in session.messages],
        }
    }


@router.post("/session/{session_id}/end")
async def end_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    session = get_owned_session(db, session_id, current_user)
    ai_assistance_service.expire_if_needed(db, session)

    return {
        "success": True,
        "data": ai_assistance_service.end_session(db, session)
    }
