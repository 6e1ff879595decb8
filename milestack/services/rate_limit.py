"""
Database-backed fixed-window rate limiting.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from milestack.models.admin import RateLimit


logger = logging.getLogger(__name__)


def check_rate_limit(
    db: Session,
    identifier: str,
    action: str,
    max_attempts: int,
    window_minutes: int
) -> bool:
    """
    Count an attempt and report whether it is allowed.

    Args:
        db: Database session
        identifier: Who is acting (IP address or e-mail)
        action: Rate limited action name
        max_attempts: Attempts allowed per window
        window_minutes: Window length

    Returns:
        bool: False once the window's attempts reached the maximum
    """
    now = datetime.utcnow()
    window_start = now - timedelta(minutes=window_minutes)

    # Drop stale windows for this action
    db.query(RateLimit).filter(
        RateLimit.action == action,
        RateLimit.window_start < window_start
    ).delete(synchronize_session=False)

    entry = db.query(RateLimit).filter(
        RateLimit.identifier == identifier,
        RateLimit.action == action
    ).first()

    if entry is None:
        db.add(RateLimit(identifier=identifier, action=action, attempts=1, window_start=now))
        db.commit()
        return True

    if entry.attempts >= max_attempts:
        db.commit()
        logger.warning(f"Rate limit hit for {action} by {identifier}")
        return False

    entry.attempts += 1
    db.commit()
    return True
