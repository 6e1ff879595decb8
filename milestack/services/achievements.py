"""
Achievement evaluation service.

Templates are seeded into the database. Progress is always computed from
the stored ledger, attempts and streak counters, so checking is
idempotent and can run after any activity.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from milestack.models.achievement import AchievementTemplate, Achievement
from milestack.models.assignment import Assignment, AssignmentAnalysis, LearningMilestone, MilestoneStatus, MilestoneAttempt
from milestack.models.pathway import LearningPathway, PathwayCheckpoint, CheckpointAttempt, AttemptStatus
from milestack.models.points import PointTransaction, FraudDetectionLog, TransactionType, FraudAction, EarnCategory
from milestack.models.user import User
from milestack.services.points import points_service


logger = logging.getLogger(__name__)


ACHIEVEMENT_TEMPLATES: List[Dict[str, Any]] = [
    # Streaks
    {
        "id": "streak_7_days",
        "name": "Week Warrior",
        "description": "Maintain a 7-day learning streak",
        "category": "streak",
        "icon": "🔥",
        "points": 50,
        "criteria": {"type": "streak", "target": 7},
    },
    {
        "id": "streak_30_days",
        "name": "Monthly Master",
        "description": "Maintain a 30-day learning streak",
        "category": "streak",
        "icon": "🏆",
        "points": 200,
        "criteria": {"type": "streak", "target": 30},
    },
    {
        "id": "streak_90_days",
        "name": "Quarter Champion",
        "description": "Maintain a 90-day learning streak",
        "category": "streak",
        "icon": "👑",
        "points": 500,
        "criteria": {"type": "streak", "target": 90},
    },
    # Mastery
    {
        "id": "mastery_algorithms",
        "name": "Algorithm Architect",
        "description": "Master 10 algorithm concepts",
        "category": "mastery",
        "icon": "🧮",
        "points": 100,
        "criteria": {"type": "mastery", "target": 10, "topic": "algorithms"},
    },
    {
        "id": "mastery_data_structures",
        "name": "Data Structure Specialist",
        "description": "Master 10 data structure concepts",
        "category": "mastery",
        "icon": "🏗️",
        "points": 100,
        "criteria": {"type": "mastery", "target": 10, "topic": "data-structures"},
    },
    {
        "id": "mastery_web_dev",
        "name": "Web Development Wizard",
        "description": "Master 10 web development concepts",
        "category": "mastery",
        "icon": "🌐",
        "points": 100,
        "criteria": {"type": "mastery", "target": 10, "topic": "web-dev"},
    },
    # Collaboration
    {
        "id": "helper_10_peers",
        "name": "Peer Mentor",
        "description": "Help 10 fellow students",
        "category": "collaboration",
        "icon": "🤝",
        "points": 150,
        "criteria": {"type": "collaboration", "target": 10},
    },
    {
        "id": "helper_50_peers",
        "name": "Community Champion",
        "description": "Help 50 fellow students",
        "category": "collaboration",
        "icon": "🌟",
        "points": 500,
        "criteria": {"type": "collaboration", "target": 50},
    },
    # Integrity
    {
        "id": "integrity_transparent",
        "name": "Transparency Advocate",
        "description": "Maintain transparent AI usage for 30 days",
        "category": "integrity",
        "icon": "🔍",
        "points": 100,
        "criteria": {"type": "integrity", "target": 30, "timeframe": "daily"},
    },
    {
        "id": "integrity_ethical",
        "name": "Ethical Learner",
        "description": "Complete 100 assessments without fraud flags",
        "category": "integrity",
        "icon": "⚖️",
        "points": 200,
        "criteria": {"type": "integrity", "target": 100},
    },
    # Points
    {
        "id": "points_1000",
        "name": "Point Collector",
        "description": "Earn 1,000 total points",
        "category": "points",
        "icon": "💰",
        "points": 50,
        "criteria": {"type": "points", "target": 1000},
    },
    {
        "id": "points_5000",
        "name": "Point Accumulator",
        "description": "Earn 5,000 total points",
        "category": "points",
        "icon": "💎",
        "points": 100,
        "criteria": {"type": "points", "target": 5000},
    },
    {
        "id": "points_10000",
        "name": "Point Master",
        "description": "Earn 10,000 total points",
        "category": "points",
        "icon": "💍",
        "points": 200,
        "criteria": {"type": "points", "target": 10000},
    },
]


class AchievementsService:
    """Seed templates, compute progress and unlock achievements."""

    def initialize_templates(self, db: Session) -> int:
        """
        Insert missing templates.

        Returns:
            int: Number of templates created
        """
        existing = {t.id for t in db.query(AchievementTemplate.id).all()}
        created = 0
        for template in ACHIEVEMENT_TEMPLATES:
            if template["id"] in existing:
                continue
            db.add(AchievementTemplate(**template))
            created += 1
        if created:
            db.commit()
        return created

    # ---------------------------------------------------------------- progress

    def _has_open_fraud_flags(self, db: Session, user_id: int) -> bool:
        return db.query(FraudDetectionLog).filter(
            FraudDetectionLog.user_id == user_id,
            FraudDetectionLog.action_taken.in_([FraudAction.FLAG.value, FraudAction.BLOCK.value]),
            FraudDetectionLog.reviewed.is_(False)
        ).count() > 0

    def _completed_assessments(self, db: Session, user_id: int) -> int:
        checkpoints = db.query(CheckpointAttempt).filter(
            CheckpointAttempt.user_id == user_id
        ).count()
        milestones = db.query(MilestoneAttempt).filter(
            MilestoneAttempt.user_id == user_id
        ).count()
        return checkpoints + milestones

    def _active_days(self, db: Session, user_id: int) -> int:
        days = db.query(
            func.date(PointTransaction.created_at)
        ).filter(
            PointTransaction.user_id == user_id,
            PointTransaction.transaction_type == TransactionType.EARNED.value
        ).distinct().count()
        return days

    def _mastered_concepts(self, db: Session, user_id: int, topic: str) -> int:
        passed_checkpoints = db.query(CheckpointAttempt.checkpoint_id).join(
            PathwayCheckpoint, CheckpointAttempt.checkpoint_id == PathwayCheckpoint.id
        ).join(
            LearningPathway, PathwayCheckpoint.pathway_id == LearningPathway.id
        ).filter(
            CheckpointAttempt.user_id == user_id,
            CheckpointAttempt.status == AttemptStatus.PASSED.value,
            LearningPathway.category == topic
        ).distinct().count()

        needle = topic.replace("-", " ").lower()
        completed_milestones = 0
        rows = db.query(LearningMilestone, AssignmentAnalysis).join(
            Assignment, LearningMilestone.assignment_id == Assignment.id
        ).join(
            AssignmentAnalysis, AssignmentAnalysis.assignment_id == Assignment.id
        ).filter(
            Assignment.user_id == user_id,
            LearningMilestone.status == MilestoneStatus.COMPLETED.value
        ).all()
        for _, analysis in rows:
            if any(needle in str(concept).lower() for concept in analysis.concepts or []):
                completed_milestones += 1

        return passed_checkpoints + completed_milestones

    def calculate_progress(self, db: Session, user: User, criteria: Dict[str, Any]) -> Dict[str, Any]:
        """
        Current value towards a template's target.

        Args:
            db: Database session
            user: User being evaluated
            criteria: Template criteria

        Returns:
            Dict[str, Any]: current, target and percentage
        """
        criteria_type = criteria.get("type")
        target = int(criteria.get("target", 1)) or 1
        current = 0

        if criteria_type == "points":
            balance = points_service.get_or_create_balance(db, user.id)
            current = balance.total_earned
        elif criteria_type == "streak":
            current = user.current_streak
        elif criteria_type == "collaboration":
            current = db.query(PointTransaction).filter(
                PointTransaction.user_id == user.id,
                PointTransaction.transaction_type == TransactionType.EARNED.value,
                PointTransaction.category == EarnCategory.PEER_HELP.value
            ).count()
        elif criteria_type == "mastery":
            current = self._mastered_concepts(db, user.id, criteria.get("topic", ""))
        elif criteria_type == "integrity":
            if self._has_open_fraud_flags(db, user.id):
                current = 0
            elif criteria.get("timeframe") == "daily":
                current = self._active_days(db, user.id)
            else:
                current = self._completed_assessments(db, user.id)

        return {
            "current": current,
            "target": target,
            "percentage": self.progress_percentage(current, target),
        }

    @staticmethod
    def progress_percentage(current: int, target: int) -> int:
        if target <= 0:
            return 100
        return min(round(current / target * 100), 100)

    # ---------------------------------------------------------------- unlock

    def check_achievements(self, db: Session, user: User) -> List[Dict[str, Any]]:
        """
        Unlock every template whose target is met.

        Returns:
            List[Dict[str, Any]]: Newly unlocked achievements
        """
        unlocked_ids = {
            a.template_id for a in db.query(Achievement).filter(Achievement.user_id == user.id).all()
        }
        templates = db.query(AchievementTemplate).filter(AchievementTemplate.is_active.is_(True)).all()

        newly_unlocked = []
        for template in templates:
            if template.id in unlocked_ids:
                continue

            progress = self.calculate_progress(db, user, template.criteria)
            if progress["current"] < progress["target"]:
                continue

            points_service.credit_achievement(
                db,
                user.id,
                template.points,
                reason=f"Achievement unlocked: {template.name}",
                source_id=template.id,
            )
            achievement = Achievement(
                user_id=user.id,
                template_id=template.id,
                progress=progress,
                points_awarded=template.points,
                unlocked_at=datetime.utcnow(),
            )
            db.add(achievement)
            db.flush()
            newly_unlocked.append({**template.to_dict(), "progress": progress})
            logger.info(f"User {user.id} unlocked achievement {template.id}")

        db.commit()
        return newly_unlocked

    def get_user_achievements(self, db: Session, user: User) -> Dict[str, Any]:
        """All templates with unlock state and progress for one user."""
        unlocked = {
            a.template_id: a for a in db.query(Achievement).filter(Achievement.user_id == user.id).all()
        }
        templates = db.query(AchievementTemplate).filter(
            AchievementTemplate.is_active.is_(True)
        ).order_by(AchievementTemplate.category, AchievementTemplate.points).all()

        items = []
        for template in templates:
            item = template.to_dict()
            achievement = unlocked.get(template.id)
            if achievement:
                item.update({
                    "unlocked": True,
                    "unlocked_at": achievement.unlocked_at.isoformat(),
                    "progress": achievement.progress,
                })
            else:
                item.update({
                    "unlocked": False,
                    "unlocked_at": None,
                    "progress": self.calculate_progress(db, user, template.criteria),
                })
            items.append(item)

        return {
            "achievements": items,
            "total": len(items),
            "unlocked": len(unlocked),
            "total_points": sum(a.points_awarded for a in unlocked.values()),
        }

    def get_analytics(self, db: Session, user: User) -> Dict[str, Any]:
        """Unlocked versus available achievements per category."""
        data = self.get_user_achievements(db, user)
        by_category: Dict[str, Dict[str, int]] = {}
        for item in data["achievements"]:
            entry = by_category.setdefault(item["category"], {"unlocked": 0, "total": 0})
            entry["total"] += 1
            if item["unlocked"]:
                entry["unlocked"] += 1

        recent = [
            a for a in sorted(
                (i for i in data["achievements"] if i["unlocked"]),
                key=lambda i: i["unlocked_at"],
                reverse=True
            )
        ][:5]

        return {
            "total": data["total"],
            "unlocked": data["unlocked"],
            "completion_rate": self.progress_percentage(data["unlocked"], data["total"]) if data["total"] else 0,
            "points_from_achievements": data["total_points"],
            "by_category": by_category,
            "recent": recent,
        }


achievements_service = AchievementsService()
