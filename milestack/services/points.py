"""
Points economy service.

Every credit or debit of a user's balance goes through this module so the
ledger, daily limits, cooling period and fraud scoring stay consistent.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from milestack.core.config import settings
from milestack.models.points import (
    UserPoints, PointTransaction, FraudDetectionLog,
    TransactionType, FraudAction
)


logger = logging.getLogger(__name__)

ACHIEVEMENT_CATEGORY = "achievement"


class PointsError(Exception):
    """Raised when points cannot be awarded or spent."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class PointsService:
    """Award, spend and report on points."""

    # Fraud signals
    RAPID_FIRE_LIMIT = 10        # earned transactions per hour
    RAPID_FIRE_RISK = 30
    LOW_QUALITY_LIMIT = 50
    LOW_QUALITY_RISK = 20
    DAILY_ACTIVITY_LIMIT = 20    # earned transactions per day
    DAILY_ACTIVITY_RISK = 25
    SOURCE_ABUSE_LIMIT = 5       # earned transactions per source per day
    SOURCE_ABUSE_RISK = 15

    BLOCK_THRESHOLD = 70
    FLAG_THRESHOLD = 40
    REVIEW_THRESHOLD = 20

    def get_or_create_balance(self, db: Session, user_id: int) -> UserPoints:
        balance = db.query(UserPoints).filter(UserPoints.user_id == user_id).first()
        if balance is None:
            balance = UserPoints(
                user_id=user_id,
                current_balance=0,
                total_earned=0,
                total_spent=0,
                daily_earned=0,
            )
            db.add(balance)
            db.flush()
        return balance

    def _reset_daily_if_needed(self, balance: UserPoints, now: datetime) -> None:
        if balance.last_earned_date is None or balance.last_earned_date.date() != now.date():
            balance.daily_earned = 0

    def remaining_today(self, balance: UserPoints) -> int:
        now = datetime.utcnow()
        if balance.last_earned_date is None or balance.last_earned_date.date() != now.date():
            return settings.DAILY_POINT_LIMIT
        return max(0, settings.DAILY_POINT_LIMIT - balance.daily_earned)

    def _earned_query(self, db: Session, user_id: int, since: datetime):
        return db.query(PointTransaction).filter(
            PointTransaction.user_id == user_id,
            PointTransaction.transaction_type == TransactionType.EARNED.value,
            PointTransaction.category != ACHIEVEMENT_CATEGORY,
            PointTransaction.created_at >= since
        )

    def detect_fraud(
        self,
        db: Session,
        user_id: int,
        activity_type: str,
        quality_score: Optional[int] = None,
        source_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Score an earning attempt against recent activity.

        Args:
            db: Database session
            user_id: Earning user
            activity_type: Earn category
            quality_score: Quality of the work being rewarded
            source_id: Identifier of the rewarded item

        Returns:
            Dict[str, Any]: risk_score, flags, action and details
        """
        now = datetime.utcnow()
        risk_score = 0
        flags: List[str] = []
        details: Dict[str, Any] = {"activity_type": activity_type}

        last_hour = self._earned_query(db, user_id, now - timedelta(hours=1)).count()
        details["earned_last_hour"] = last_hour
        if last_hour > self.RAPID_FIRE_LIMIT:
            risk_score += self.RAPID_FIRE_RISK
            flags.append("rapid_fire_attempts")

        if quality_score is not None and quality_score < self.LOW_QUALITY_LIMIT:
            risk_score += self.LOW_QUALITY_RISK
            flags.append("low_quality_score")
            details["quality_score"] = quality_score

        last_day = self._earned_query(db, user_id, now - timedelta(hours=24)).count()
        details["earned_last_day"] = last_day
        if last_day > self.DAILY_ACTIVITY_LIMIT:
            risk_score += self.DAILY_ACTIVITY_RISK
            flags.append("excessive_daily_activity")

        if source_id:
            same_source = self._earned_query(db, user_id, now - timedelta(hours=24)).filter(
                PointTransaction.source_id == source_id
            ).count()
            details["same_source_last_day"] = same_source
            if same_source > self.SOURCE_ABUSE_LIMIT:
                risk_score += self.SOURCE_ABUSE_RISK
                flags.append("source_abuse")

        if risk_score >= self.BLOCK_THRESHOLD:
            action = FraudAction.BLOCK
        elif risk_score >= self.FLAG_THRESHOLD:
            action = FraudAction.FLAG
        elif risk_score >= self.REVIEW_THRESHOLD:
            action = FraudAction.REVIEW
        else:
            action = FraudAction.NONE

        return {
            "risk_score": min(risk_score, 100),
            "flags": flags,
            "action": action.value,
            "details": details,
        }

    def _log_fraud(self, db: Session, user_id: int, activity_type: str, result: Dict[str, Any]) -> FraudDetectionLog:
        entry = FraudDetectionLog(
            user_id=user_id,
            activity_type=activity_type,
            risk_score=result["risk_score"],
            flags=result["flags"],
            details=result["details"],
            action_taken=result["action"],
        )
        db.add(entry)
        return entry

    def award_points(
        self,
        db: Session,
        user_id: int,
        amount: int,
        category: str,
        reason: str,
        source_id: Optional[str] = None,
        source_type: Optional[str] = None,
        quality_score: Optional[int] = None,
        topic: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Award points for a learning action.

        Raises:
            PointsError: When the award is refused. A fraud block uses
                status 403, every other refusal 400.

        Returns:
            Dict[str, Any]: points_awarded, new_balance, transaction_id, message
        """
        if amount <= 0:
            raise PointsError("Amount must be positive")

        balance = self.get_or_create_balance(db, user_id)

        fraud = self.detect_fraud(db, user_id, category, quality_score, source_id)
        if fraud["action"] == FraudAction.BLOCK.value:
            self._log_fraud(db, user_id, category, fraud)
            db.commit()
            logger.warning(
                f"Blocked points award for user {user_id}: risk {fraud['risk_score']} flags {fraud['flags']}"
            )
            raise PointsError("Activity flagged for review", status_code=403)

        now = datetime.utcnow()
        self._reset_daily_if_needed(balance, now)
        remaining = settings.DAILY_POINT_LIMIT - balance.daily_earned
        if remaining <= 0:
            raise PointsError("Daily point limit reached")
        if amount > remaining:
            raise PointsError(f"Requested amount exceeds daily limit. Remaining: {remaining}")

        if quality_score is not None and quality_score < settings.MIN_QUALITY_SCORE:
            raise PointsError("Quality score too low to earn points")

        cooling_start = now - timedelta(minutes=settings.COOLING_PERIOD_MINUTES)
        last_earned = self._earned_query(db, user_id, cooling_start).order_by(
            PointTransaction.created_at.desc()
        ).first()
        if last_earned:
            wait = settings.COOLING_PERIOD_MINUTES * 60 - int((now - last_earned.created_at).total_seconds())
            raise PointsError(f"Please wait {max(wait, 1)} seconds before earning more points")

        balance.current_balance += amount
        balance.total_earned += amount
        balance.daily_earned += amount
        balance.last_earned_date = now

        transaction = PointTransaction(
            user_id=user_id,
            amount=amount,
            transaction_type=TransactionType.EARNED.value,
            category=category,
            reason=reason,
            source_id=source_id,
            source_type=source_type,
            topic=topic,
            quality_score=quality_score,
            verified=fraud["action"] == FraudAction.NONE.value,
        )
        db.add(transaction)

        if fraud["action"] != FraudAction.NONE.value:
            self._log_fraud(db, user_id, category, fraud)
            logger.info(f"Points award for user {user_id} marked '{fraud['action']}' (risk {fraud['risk_score']})")

        db.commit()
        db.refresh(transaction)

        return {
            "points_awarded": amount,
            "new_balance": balance.current_balance,
            "transaction_id": transaction.id,
            "message": f"Awarded {amount} points for {reason}",
        }

    def credit_achievement(self, db: Session, user_id: int, amount: int, reason: str, source_id: str) -> PointTransaction:
        """Credit achievement points without daily limit or cooling checks. Does not commit."""
        balance = self.get_or_create_balance(db, user_id)
        balance.current_balance += amount
        balance.total_earned += amount

        transaction = PointTransaction(
            user_id=user_id,
            amount=amount,
            transaction_type=TransactionType.EARNED.value,
            category=ACHIEVEMENT_CATEGORY,
            reason=reason,
            source_id=source_id,
            source_type="achievement",
            verified=True,
        )
        db.add(transaction)
        return transaction

    def spend_points(
        self,
        db: Session,
        user_id: int,
        amount: int,
        category: str,
        reason: str,
        source_id: Optional[str] = None,
        commit: bool = True
    ) -> Dict[str, Any]:
        """
        Deduct points from the balance.

        Raises:
            PointsError: When the balance is too low
        """
        if amount <= 0:
            raise PointsError("Amount must be positive")

        balance = self.get_or_create_balance(db, user_id)
        if balance.current_balance < amount:
            raise PointsError("Insufficient points balance")

        balance.current_balance -= amount
        balance.total_spent += amount

        transaction = PointTransaction(
            user_id=user_id,
            amount=-amount,
            transaction_type=TransactionType.SPENT.value,
            category=category,
            reason=reason,
            source_id=source_id,
            verified=True,
        )
        db.add(transaction)

        if commit:
            db.commit()
            db.refresh(transaction)
        else:
            db.flush()

        return {
            "points_spent": amount,
            "new_balance": balance.current_balance,
            "transaction_id": transaction.id,
            "message": f"Spent {amount} points on {reason}",
        }

    def get_balance_summary(self, db: Session, user_id: int) -> Dict[str, Any]:
        balance = self.get_or_create_balance(db, user_id)
        db.commit()
        remaining = self.remaining_today(balance)
        return {
            "current_balance": balance.current_balance,
            "total_earned": balance.total_earned,
            "total_spent": balance.total_spent,
            "daily_earned": settings.DAILY_POINT_LIMIT - remaining,
            "daily_limit": settings.DAILY_POINT_LIMIT,
            "remaining_today": remaining,
            "can_earn_more": remaining > 0,
        }

    def get_history(
        self,
        db: Session,
        user_id: int,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[str] = None
    ) -> Dict[str, Any]:
        query = db.query(PointTransaction).filter(PointTransaction.user_id == user_id)
        if transaction_type:
            query = query.filter(PointTransaction.transaction_type == transaction_type)

        total = query.count()
        transactions = query.order_by(
            PointTransaction.created_at.desc(), PointTransaction.id.desc()
        ).offset(offset).limit(limit).all()

        return {
            "transactions": [t.to_dict() for t in transactions],
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(transactions) < total,
        }

    def get_analytics(self, db: Session, user_id: int, days: int = 30) -> Dict[str, Any]:
        """
        Earned and spent totals by category plus a daily series.
        """
        since = datetime.utcnow() - timedelta(days=days)
        transactions = db.query(PointTransaction).filter(
            PointTransaction.user_id == user_id,
            PointTransaction.created_at >= since
        ).all()

        earned_by_category: Dict[str, int] = defaultdict(int)
        spent_by_category: Dict[str, int] = defaultdict(int)
        daily: Dict[str, Dict[str, int]] = defaultdict(lambda: {"earned": 0, "spent": 0})

        for t in transactions:
            day = t.created_at.date().isoformat()
            if t.transaction_type == TransactionType.EARNED.value:
                earned_by_category[t.category] += t.amount
                daily[day]["earned"] += t.amount
            else:
                spent_by_category[t.category] += abs(t.amount)
                daily[day]["spent"] += abs(t.amount)

        total_earned = sum(earned_by_category.values())
        total_spent = sum(spent_by_category.values())

        return {
            "period_days": days,
            "total_earned": total_earned,
            "total_spent": total_spent,
            "net": total_earned - total_spent,
            "earned_by_category": dict(earned_by_category),
            "spent_by_category": dict(spent_by_category),
            "daily": [{"date": d, **values} for d, values in sorted(daily.items())],
            "average_daily_earned": round(total_earned / days, 2) if days else 0,
            "average_daily_spent": round(total_spent / days, 2) if days else 0,
        }

    def total_earned_by_users(self, db: Session, topic: Optional[str] = None) -> Dict[int, int]:
        """Sum of earned points per user, optionally restricted to a topic."""
        query = db.query(
            PointTransaction.user_id,
            func.sum(PointTransaction.amount)
        ).filter(PointTransaction.transaction_type == TransactionType.EARNED.value)
        if topic:
            query = query.filter(PointTransaction.topic == topic)
        return {user_id: int(total or 0) for user_id, total in query.group_by(PointTransaction.user_id).all()}


points_service = PointsService()
