"""
Student portfolio: completed projects, skills matrix, timeline and exports.
"""

import json
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from sqlalchemy.orm import Session

from milestack.models.achievement import Achievement
from milestack.models.ai import AIAssistanceLog
from milestack.models.assignment import Assignment
from milestack.models.pathway import LearningPathway, PathwayProgress
from milestack.models.user import User
from milestack.services.documents import build_pdf, build_zip
from milestack.services.integrity import format_duration


logger = logging.getLogger(__name__)

EXPORT_FORMATS = ["pdf", "web", "github"]

CONCEPT_SKILLS: Dict[str, List[str]] = {
    "http requests": ["API Integration", "Web Development", "HTTP Protocol"],
    "html parsing": ["Web Scraping", "Data Extraction", "DOM Manipulation"],
    "error handling": ["Debugging", "Exception Handling", "Robust Programming"],
    "data structures": ["Algorithm Design", "Data Organization", "Problem Solving"],
    "algorithms": ["Algorithm Design", "Problem Solving", "Computational Thinking"],
}

SKILL_CATEGORIES: Dict[str, List[str]] = {
    "Programming": [
        "API Integration", "Web Development", "Web Scraping", "DOM Manipulation",
        "Exception Handling", "Data Extraction",
    ],
    "Computer Science": [
        "Algorithm Design", "Computational Thinking", "Data Organization", "HTTP Protocol",
    ],
    "Software Engineering": ["Debugging", "Robust Programming", "Problem Solving"],
}

ACHIEVEMENT_ICONS = {
    "learning": "📚",
    "collaboration": "🤝",
    "integrity": "✅",
    "points": "⭐",
}
DEFAULT_ICON = "🏆"

PORTFOLIO_CSS = """body { font-family: -apple-system, Helvetica, Arial, sans-serif; margin: 0; color: #1f2937; }
header { background: #2563eb; color: white; padding: 32px; }
main { max-width: 880px; margin: 0 auto; padding: 24px; }
.project { border: 1px solid #e5e7eb; border-radius: 8px; padding: 16px; margin-bottom: 16px; }
.skill { display: inline-block; background: #eff6ff; color: #1e40af; border-radius: 12px; padding: 2px 10px; margin: 2px; }
"""


def skills_for_concepts(concepts: List[str]) -> List[str]:
    """Map assignment concepts onto portfolio skills."""
    skills: List[str] = []
    for concept in concepts:
        mapped = CONCEPT_SKILLS.get(str(concept).strip().lower(), [str(concept).strip().title()])
        for skill in mapped:
            if skill and skill not in skills:
                skills.append(skill)
    return skills


def skill_category(skill: str) -> str:
    for category, skills in SKILL_CATEGORIES.items():
        if skill in skills:
            return category
    return "General"


def skill_level(projects: int, evidence: int) -> str:
    if projects >= 3 and evidence >= 5:
        return "advanced"
    if projects >= 2 and evidence >= 3:
        return "intermediate"
    return "beginner"


class PortfolioService:
    """Builds portfolio views from completed learning work."""

    def _ai_summary(self, db: Session, user_id: int, assignment_id: int) -> Dict[str, Any]:
        logs = db.query(AIAssistanceLog).filter(
            AIAssistanceLog.user_id == user_id,
            AIAssistanceLog.assignment_id == assignment_id
        ).all()
        levels: Dict[int, int] = {}
        for log in logs:
            levels[log.assistance_level] = levels.get(log.assistance_level, 0) + 1
        return {
            "requests": len(logs),
            "points_spent": sum(log.points_spent for log in logs),
            "levels_used": levels,
        }

    def get_projects(self, db: Session, user: User) -> List[Dict[str, Any]]:
        """Completed pathways and fully completed assignments, newest first."""
        projects = []

        assignments = db.query(Assignment).filter(Assignment.user_id == user.id).all()
        for assignment in assignments:
            if assignment.progress_status != "completed":
                continue
            concepts = assignment.analysis.concepts if assignment.analysis else []
            completed = [m.completed_at for m in assignment.milestones if m.completed_at]
            completed_at = max(completed) if completed else assignment.updated_at
            projects.append({
                "id": f"assignment-{assignment.id}",
                "type": "assignment",
                "title": assignment.title,
                "description": assignment.description,
                "course_name": assignment.course_name,
                "concepts": concepts,
                "skills": skills_for_concepts(concepts),
                "milestones_completed": assignment.completed_milestones,
                "points_earned": assignment.total_points,
                "time_invested": format_duration((completed_at - assignment.created_at).total_seconds()),
                "ai_assistance": self._ai_summary(db, user.id, assignment.id),
                "completed_at": completed_at.isoformat(),
            })

        progress_rows = db.query(PathwayProgress).filter(
            PathwayProgress.user_id == user.id,
            PathwayProgress.completed_at.isnot(None)
        ).all()
        for progress in progress_rows:
            pathway: LearningPathway = progress.pathway
            concepts = list(pathway.tags or []) or [pathway.category.replace("-", " ")]
            projects.append({
                "id": f"pathway-{pathway.id}",
                "type": "pathway",
                "title": pathway.title,
                "description": pathway.description,
                "category": pathway.category,
                "concepts": concepts,
                "skills": skills_for_concepts(concepts),
                "milestones_completed": progress.completed_checkpoints,
                "points_earned": progress.points_earned,
                "time_invested": format_duration(progress.time_spent),
                "ai_assistance": {"requests": 0, "points_spent": 0, "levels_used": {}},
                "completed_at": progress.completed_at.isoformat(),
            })

        projects.sort(key=lambda p: p["completed_at"], reverse=True)
        return projects

    def get_skills(self, db: Session, user: User) -> Dict[str, Any]:
        """
        Skills matrix grouped by category.

        Evidence counts every concept occurrence that maps to the skill,
        projects counts distinct projects demonstrating it.
        """
        projects = self.get_projects(db, user)
        matrix: Dict[str, Dict[str, Any]] = {}

        for project in projects:
            for concept in project["concepts"]:
                for skill in skills_for_concepts([concept]):
                    entry = matrix.setdefault(skill, {"projects": set(), "evidence": 0})
                    entry["projects"].add(project["id"])
                    entry["evidence"] += 1

        categories: Dict[str, List[Dict[str, Any]]] = {
            name: [] for name in list(SKILL_CATEGORIES.keys()) + ["General"]
        }
        for skill, entry in sorted(matrix.items()):
            categories[skill_category(skill)].append({
                "name": skill,
                "level": skill_level(len(entry["projects"]), entry["evidence"]),
                "projects": len(entry["projects"]),
                "evidence": entry["evidence"],
            })

        return {
            "categories": categories,
            "total_skills": len(matrix),
            "total_projects": len(projects),
        }

    def get_timeline(self, db: Session, user: User) -> List[Dict[str, Any]]:
        events = [{
            "type": "joined",
            "title": "Joined Milestack",
            "date": user.created_at.isoformat(),
        }]
        for assignment in db.query(Assignment).filter(Assignment.user_id == user.id).all():
            events.append({
                "type": "assignment_uploaded",
                "title": f"Started {assignment.title}",
                "date": assignment.created_at.isoformat(),
            })
        for project in self.get_projects(db, user):
            events.append({
                "type": f"{project['type']}_completed",
                "title": f"Completed {project['title']}",
                "date": project["completed_at"],
            })
        for achievement in db.query(Achievement).filter(Achievement.user_id == user.id).all():
            events.append({
                "type": "achievement_unlocked",
                "title": f"Unlocked {achievement.template.name if achievement.template else achievement.template_id}",
                "date": achievement.unlocked_at.isoformat(),
            })
        events.sort(key=lambda e: e["date"], reverse=True)
        return events

    def get_achievement_gallery(self, db: Session, user: User) -> List[Dict[str, Any]]:
        gallery = []
        achievements = db.query(Achievement).filter(
            Achievement.user_id == user.id
        ).order_by(Achievement.unlocked_at.desc()).all()
        for achievement in achievements:
            item = achievement.to_dict()
            item["display_icon"] = ACHIEVEMENT_ICONS.get(item.get("category"), DEFAULT_ICON)
            gallery.append(item)
        return gallery

    def build_portfolio(self, db: Session, user: User) -> Dict[str, Any]:
        return {
            "student": {
                "name": user.full_name,
                "email": user.email,
                "institution": user.profile.institution_name if user.profile else None,
                "major": user.profile.major if user.profile else None,
            },
            "projects": self.get_projects(db, user),
            "skills": self.get_skills(db, user),
            "achievements": self.get_achievement_gallery(db, user),
            "generated_at": datetime.utcnow().isoformat(),
        }

    # ------------------------------------------------------------ exports

    def _render_html(self, portfolio: Dict[str, Any]) -> str:
        student = portfolio["student"]
        project_blocks = []
        for project in portfolio["projects"]:
            skills = "".join(f'<span class="skill">{s}</span>' for s in project["skills"])
            project_blocks.append(
                f'<div class="project"><h3>{project["title"]}</h3>'
                f'<p>{project.get("description") or ""}</p>'
                f'<p>Time invested: {project["time_invested"]} · Points: {project["points_earned"]}</p>'
                f"<div>{skills}</div></div>"
            )
        achievements = "".join(
            f'<li>{a["display_icon"]} {a.get("name", a["id"])}</li>' for a in portfolio["achievements"]
        )
        return (
            "<!DOCTYPE html>\n<html lang=\"en\"><head><meta charset=\"utf-8\">"
            f"<title>{student['name']} - Portfolio</title>"
            '<link rel="stylesheet" href="style.css"></head><body>'
            f"<header><h1>{student['name']}</h1><p>{student.get('major') or ''}</p></header>"
            f"<main><h2>Projects</h2>{''.join(project_blocks) or '<p>No completed projects yet.</p>'}"
            f"<h2>Achievements</h2><ul>{achievements}</ul></main></body></html>\n"
        )

    def _render_project_html(self, student: Dict[str, Any], project: Dict[str, Any]) -> str:
        skills = "".join(f'<span class="skill">{s}</span>' for s in project["skills"])
        concepts = "".join(f"<li>{c}</li>" for c in project["concepts"])
        ai = project["ai_assistance"]
        return (
            "<!DOCTYPE html>\n<html lang=\"en\"><head><meta charset=\"utf-8\">"
            f"<title>{project['title']} - {student['name']}</title>"
            '<link rel="stylesheet" href="style.css"></head><body>'
            f"<header><h1>{project['title']}</h1><p>{student['name']}</p></header>"
            f'<main><div class="project"><p>{project.get("description") or ""}</p>'
            f"<p>Time invested: {project['time_invested']} · Points: {project['points_earned']}"
            f" · Milestones: {project['milestones_completed']}</p>"
            f"<h2>Concepts</h2><ul>{concepts}</ul>"
            f"<h2>Skills</h2><div>{skills}</div>"
            f"<h2>AI assistance</h2><p>{ai['requests']} requests, {ai['points_spent']} points spent</p>"
            "</div></main></body></html>\n"
        )

    def project_website(self, db: Session, user: User, project_id: str) -> Optional[Dict[str, Any]]:
        """
        Static page for one completed project.

        Args:
            project_id: Portfolio project id such as ``assignment-3`` or ``pathway-1``

        Returns:
            Optional[Dict[str, Any]]: project, html and css, or None when the
                user has no completed project with that id
        """
        project = next((p for p in self.get_projects(db, user) if p["id"] == project_id), None)
        if project is None:
            return None

        student = {"name": user.full_name}
        return {
            "project": project,
            "html": self._render_project_html(student, project),
            "css": PORTFOLIO_CSS,
        }

    def _render_readme(self, portfolio: Dict[str, Any]) -> str:
        lines = [f"# {portfolio['student']['name']}", "", "## Projects", ""]
        if not portfolio["projects"]:
            lines.append("No completed projects yet.")
        for project in portfolio["projects"]:
            lines.append(f"### {project['title']}")
            if project.get("description"):
                lines.append(project["description"])
            lines.append("")
            lines.append(f"- Time invested: {project['time_invested']}")
            lines.append(f"- Skills: {', '.join(project['skills']) or 'n/a'}")
            lines.append(f"- AI assistance requests: {project['ai_assistance']['requests']}")
            lines.append("")
        lines.extend(["## Skills", ""])
        for category, skills in portfolio["skills"]["categories"].items():
            if skills:
                lines.append(f"**{category}**: " + ", ".join(f"{s['name']} ({s['level']})" for s in skills))
        lines.extend(["", "## Achievements", ""])
        for achievement in portfolio["achievements"]:
            lines.append(f"- {achievement['display_icon']} {achievement.get('name', achievement['id'])}")
        return "\n".join(lines) + "\n"

    def _render_pdf(self, portfolio: Dict[str, Any]) -> bytes:
        sections = []
        for project in portfolio["projects"]:
            sections.append((project["title"], [
                f"Type: {project['type']}",
                f"Time invested: {project['time_invested']}",
                f"Skills: {', '.join(project['skills']) or 'n/a'}",
                f"AI assistance requests: {project['ai_assistance']['requests']}",
            ]))
        skill_lines = [
            f"{s['name']} ({category}, {s['level']})"
            for category, skills in portfolio["skills"]["categories"].items()
            for s in skills
        ]
        sections.append(("Skills", skill_lines))
        sections.append(("Achievements", [a.get("name", a["id"]) for a in portfolio["achievements"]]))
        return build_pdf(f"{portfolio['student']['name']} - Learning Portfolio", sections)

    def export(self, db: Session, user: User, export_format: str) -> Dict[str, Any]:
        """
        Render the portfolio for download.

        Returns:
            Dict[str, Any]: content (bytes or BytesIO), media_type, filename
        """
        portfolio = self.build_portfolio(db, user)
        data = json.dumps(portfolio, indent=2, default=str)
        stamp = datetime.utcnow().strftime("%Y%m%d")

        if export_format == "web":
            content = build_zip({
                "index.html": self._render_html(portfolio),
                "style.css": PORTFOLIO_CSS,
                "portfolio.json": data,
            })
            return {"content": content, "media_type": "application/zip", "filename": f"portfolio_web_{stamp}.zip"}

        if export_format == "github":
            content = build_zip({"README.md": self._render_readme(portfolio), "portfolio.json": data})
            return {"content": content, "media_type": "application/zip", "filename": f"portfolio_github_{stamp}.zip"}

        logger.info(f"Rendering PDF portfolio for user {user.id}")
        return {
            "content": self._render_pdf(portfolio),
            "media_type": "application/pdf",
            "filename": f"portfolio_{stamp}.pdf",
        }


portfolio_service = PortfolioService()
