"""
Rule-based grading for milestones and pathway checkpoints.

Milestone answers are normally graded by the AI agent; the rules here
are the fallback when the agent is unavailable. Checkpoints are always
graded by rules so results are deterministic.
"""

import re
from typing import Dict, Any, List, Optional

from milestack.core.config import settings
from milestack.models.pathway import CheckpointType


SENTENCE_SPLIT = re.compile(r"[.!?]+")


class GradingService:
    """Score milestone answers and checkpoint submissions."""

    # Milestone fallback
    CONTEXT_HIT = 85
    CONTEXT_MISS = 45
    UNDERSTANDING_LONG = 80
    UNDERSTANDING_SHORT = 60
    COMPLETENESS_LONG = 75
    COMPLETENESS_SHORT = 55
    CONTEXT_WEIGHT = 0.4
    UNDERSTANDING_WEIGHT = 0.35
    COMPLETENESS_WEIGHT = 0.25

    # Concept explanations
    CONCEPT_BASE = 30
    CONCEPT_HIT = 15
    TECHNICAL_TERMS = ["algorithm", "data structure", "complexity", "efficiency", "implementation"]
    TECHNICAL_TERM_POINTS = 5
    TECHNICAL_TERM_CAP = 15

    # ------------------------------------------------------------ milestones

    @staticmethod
    def milestone_keywords(title: str, concepts: Optional[List[str]] = None) -> List[str]:
        """Lower-cased words longer than three characters from the title and concepts."""
        words = re.findall(r"[a-zA-Z][a-zA-Z+#-]*", title or "")
        keywords = [w.lower() for w in words if len(w) > 3]
        for concept in concepts or []:
            concept = str(concept).strip().lower()
            if concept and concept not in keywords:
                keywords.append(concept)
        return keywords

    def grade_milestone_answer(self, answer: str, keywords: List[str]) -> Dict[str, Any]:
        """
        Fallback milestone grade.

        Returns:
            Dict[str, Any]: the three component scores, final score,
                passed flag and feedback
        """
        text = answer.lower()
        mentions = [k for k in keywords if k in text]

        context = self.CONTEXT_HIT if mentions else self.CONTEXT_MISS
        understanding = self.UNDERSTANDING_LONG if len(answer) > 50 else self.UNDERSTANDING_SHORT
        completeness = self.COMPLETENESS_LONG if len(answer) > 100 else self.COMPLETENESS_SHORT

        final = round(
            self.CONTEXT_WEIGHT * context
            + self.UNDERSTANDING_WEIGHT * understanding
            + self.COMPLETENESS_WEIGHT * completeness
        )
        passed = final >= settings.MILESTONE_PASSING_SCORE and context >= settings.MILESTONE_MIN_CONTEXT_SCORE

        suggestions = []
        if not mentions:
            suggestions.append("Relate your answer directly to this milestone's topic")
        if len(answer) <= 50:
            suggestions.append("Explain your reasoning in more depth")
        if len(answer) <= 100:
            suggestions.append("Cover every part of the competency requirement")
        if passed:
            suggestions.append("Great work! You're ready for the next milestone.")

        return {
            "context_score": context,
            "understanding_score": understanding,
            "completeness_score": completeness,
            "final_score": final,
            "passed": passed,
            "feedback": {
                "concepts_identified": mentions,
                "suggestions": suggestions,
                "encouragement": "Excellent progress!" if passed else "Keep going, you're getting closer.",
            },
        }

    @staticmethod
    def normalize_agent_grade(grade: Dict[str, Any]) -> Dict[str, Any]:
        """Map an agent grade onto the stored attempt fields."""
        def clamp(value: Any) -> int:
            try:
                return max(0, min(100, int(round(float(value)))))
            except (TypeError, ValueError):
                return 0

        context = clamp(grade.get("context_relevance_score"))
        final = clamp(grade.get("final_score"))
        return {
            "context_score": context,
            "understanding_score": clamp(grade.get("understanding_depth_score")),
            "completeness_score": clamp(grade.get("completeness_score")),
            "final_score": final,
            "passed": bool(grade.get("passed")) and final >= settings.MILESTONE_PASSING_SCORE
            and context >= settings.MILESTONE_MIN_CONTEXT_SCORE,
            "feedback": {
                "detailed_feedback": grade.get("detailed_feedback") or {},
                "suggestions": grade.get("improvement_suggestions") or [],
                "next_steps": grade.get("next_steps") or [],
                "concepts_identified": grade.get("concepts_identified") or [],
            },
        }

    # ------------------------------------------------------------ checkpoints

    @staticmethod
    def _response_text(responses: Dict[str, Any], *keys: str) -> str:
        for key in keys:
            value = responses.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return " ".join(str(v) for v in responses.values() if isinstance(v, str))

    def _score_explanation(self, text: str, expected: List[str], label: str) -> Dict[str, Any]:
        lowered = text.lower()
        score = self.CONCEPT_BASE
        strengths = ["Made an attempt to explain the concept"]
        weaknesses: List[str] = []
        recommendations: List[str] = []

        found = [c for c in expected if str(c).lower() in lowered]
        missing = [c for c in expected if c not in found]
        for item in found:
            score += self.CONCEPT_HIT
            strengths.append(f"Mentioned {item}")

        coverage = (len(found) / len(expected) * 100) if expected else 100
        if coverage >= 80:
            score += 20
            strengths.append(f"Good {label} coverage")
        elif coverage >= 50:
            score += 10
            weaknesses.append(f"Missing some key {label}s")
            recommendations.append(f"Review and include more key {label}s")
        else:
            weaknesses.append(f"Limited {label} coverage")
            recommendations.append(f"Focus on understanding and explaining key {label}s")

        if len(text) > 50:
            score += 10
            strengths.append("Clear explanation")
        if len(text) > 100:
            score += 5
            strengths.append("Detailed explanation")

        sentences = [s for s in SENTENCE_SPLIT.split(text) if len(s.strip()) > 10]
        if len(sentences) >= 3:
            score += 10
            strengths.append("Well-structured explanation")
        else:
            weaknesses.append("Could improve structure")
            recommendations.append("Break down explanation into clear sentences")

        terms = [t for t in self.TECHNICAL_TERMS if t in lowered]
        if terms:
            score += min(self.TECHNICAL_TERM_CAP, len(terms) * self.TECHNICAL_TERM_POINTS)
            strengths.append("Used appropriate technical terms")

        return {
            "score": min(100, score),
            "strengths": strengths,
            "weaknesses": weaknesses,
            "recommendations": recommendations,
            "analysis": {
                "coverage": round(coverage),
                "found": found,
                "missing": missing,
                "technical_terms": terms,
                "sentences": len(sentences),
            },
        }

    @staticmethod
    def _code_score(code: str, base: int, function_pts: int, return_pts: int,
                    branch_pts: int, loop_pts: int, length_pts: int, length_min: int) -> int:
        lowered = code.lower()
        score = base
        if "def " in lowered or "function" in lowered:
            score += function_pts
        if "return" in lowered:
            score += return_pts
        if "if " in lowered or "else" in lowered:
            score += branch_pts
        if "for " in lowered or "while" in lowered:
            score += loop_pts
        if len(code) > length_min:
            score += length_pts
        return score

    def _score_skill_assessment(self, questions: List[Dict[str, Any]], responses: Dict[str, Any]) -> Dict[str, Any]:
        total = 0
        maximum = 0
        results = []

        for index, question in enumerate(questions):
            qid = str(question.get("id", index))
            points = int(question.get("points", 10))
            answer = responses.get(qid)
            qtype = question.get("type", "multiple-choice")
            earned = 0

            if isinstance(answer, str) and answer.strip():
                if qtype == "multiple-choice":
                    correct = str(question.get("correct_answer", "")).strip().lower()
                    earned = points if answer.strip().lower() == correct else 0
                elif qtype == "code-completion":
                    raw = self._code_score(answer, 20, 20, 20, 15, 15, 10, 50)
                    earned = min(points, raw)
                elif qtype == "practical-implementation":
                    raw = self._code_score(answer, 30, 25, 25, 10, 10, 10, 100)
                    earned = min(points, raw)

            total += earned
            maximum += points
            results.append({
                "question_id": qid,
                "type": qtype,
                "score": earned,
                "max_score": points,
                "is_correct": earned > points * 0.7,
            })

        score = round(total / maximum * 100) if maximum else 0
        correct_count = len([r for r in results if r["is_correct"]])

        strengths = [f"Answered {correct_count} of {len(results)} questions well"] if correct_count else []
        weaknesses = [] if correct_count == len(results) else ["Some answers were incomplete or incorrect"]
        recommendations = [] if score >= 80 else ["Review the questions you missed and try again"]

        return {
            "score": score,
            "strengths": strengths,
            "weaknesses": weaknesses,
            "recommendations": recommendations,
            "analysis": {"questions": results, "total": total, "max": maximum},
        }

    def grade_checkpoint(self, checkpoint_type: str, content: Dict[str, Any],
                         responses: Dict[str, Any], passing_score: int) -> Dict[str, Any]:
        """
        Grade a checkpoint submission.

        Args:
            checkpoint_type: concept-explanation, skill-assessment or code-review
            content: Checkpoint content JSON
            responses: Student responses
            passing_score: Score needed to pass

        Returns:
            Dict[str, Any]: score, passed, feedback, strengths, weaknesses,
                recommendations and analysis
        """
        if checkpoint_type == CheckpointType.SKILL_ASSESSMENT.value:
            result = self._score_skill_assessment(content.get("questions") or [], responses)
        elif checkpoint_type == CheckpointType.CODE_REVIEW.value:
            text = self._response_text(responses, "analysis", "review")
            result = self._score_explanation(text, content.get("expected_issues") or [], "issue")
        else:
            text = self._response_text(responses, "explanation", "answer")
            result = self._score_explanation(text, content.get("expected_concepts") or [], "concept")

        score = result["score"]
        passed = score >= passing_score

        if passed:
            feedback = "Excellent work! You demonstrated a strong understanding of the concepts. "
        elif score >= 60:
            feedback = "Good effort! You showed understanding of some concepts. "
        else:
            feedback = "Your explanation needs improvement. "
        if result["strengths"]:
            feedback += "Strengths: " + ", ".join(result["strengths"]) + ". "
        if result["weaknesses"]:
            feedback += "Areas to improve: " + ", ".join(result["weaknesses"]) + "."

        return {**result, "passed": passed, "feedback": feedback.strip()}

    @staticmethod
    def next_steps(best_score: int, passing_score: int, weaknesses: List[str]) -> List[str]:
        """Personalised follow-up suggestions for checkpoint feedback."""
        if best_score >= passing_score:
            return [
                "Move on to the next checkpoint",
                "Apply this understanding in your assignment milestones",
            ]
        steps = ["Review the checkpoint material before your next attempt"]
        if best_score >= 60:
            steps.append("You're close: focus on the concepts you missed")
        else:
            steps.append("Use a conceptual hint from the AI tutor to rebuild the fundamentals")
        steps.extend(f"Work on: {w}" for w in weaknesses[:3])
        return steps


grading_service = GradingService()
