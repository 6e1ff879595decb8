"""
Client for the external AI tutoring agent.

The agent is a chat endpoint that takes a JSON message and answers with
free text. Structured results (assignment analyses, grades) are requested
as JSON inside that text and extracted here.
"""

import json
import logging
import re
import time
from typing import Optional, Dict, Any, List

import httpx

from milestack.core.config import settings


logger = logging.getLogger(__name__)

JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class AIAgentError(Exception):
    """Raised when the agent cannot be reached or returns unusable output."""


def extract_json(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from agent text.

    Tries the whole text first, then the outermost ``{...}`` block.

    Raises:
        AIAgentError: If no JSON object can be parsed
    """
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except (TypeError, ValueError):
        pass

    match = JSON_BLOCK.search(text or "")
    if not match:
        raise AIAgentError("Could not find JSON in AI agent response")
    try:
        data = json.loads(match.group(0))
    except ValueError as e:
        raise AIAgentError(f"Could not parse JSON from AI agent response: {e}")
    if not isinstance(data, dict):
        raise AIAgentError("AI agent JSON response is not an object")
    return data


class AIAgentClient:
    """
    Async client for the tutoring agent.

    One instance is shared by the application; routes receive it through
    the ``get_ai_agent`` dependency.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        agent_id: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.base_url = base_url or settings.AI_AGENT_URL
        self.api_key = api_key if api_key is not None else settings.AI_AGENT_API_KEY
        self.agent_id = agent_id or settings.AI_AGENT_ID
        self.timeout = timeout or settings.AI_AGENT_TIMEOUT

    def _session_id(self) -> str:
        return f"{self.agent_id}-{int(time.time() * 1000)}"

    async def send_message(
        self,
        message: str,
        user_id: str = "milestack-user",
        session_id: Optional[str] = None
    ) -> Dict[str, str]:
        """
        Send one message to the agent.

        Args:
            message: Prompt text
            user_id: Identifier forwarded to the agent
            session_id: Conversation id, generated when omitted

        Returns:
            Dict[str, str]: response text, session_id and status

        Raises:
            AIAgentError: On missing configuration, transport errors or
                non-2xx responses
        """
        if not self.api_key:
            raise AIAgentError("AI agent API key not configured")

        payload = {
            "user_id": user_id,
            "agent_id": self.agent_id,
            "session_id": session_id or self._session_id(),
            "message": message,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.base_url,
                    json=payload,
                    headers={"Content-Type": "application/json", "x-api-key": self.api_key}
                )
        except httpx.HTTPError as e:
            logger.error(f"AI agent request error: {e}")
            raise AIAgentError(f"Failed to communicate with AI agent: {e}")

        if response.status_code >= 400:
            logger.error(f"AI agent request failed: {response.status_code} {response.text[:200]}")
            raise AIAgentError(f"AI agent request failed: {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise AIAgentError("AI agent returned a non-JSON response")

        text = (
            data.get("response")
            or data.get("message")
            or data.get("text")
            or data.get("content")
        )
        if not text:
            text = json.dumps(data)

        return {
            "response": text,
            "session_id": data.get("session_id") or payload["session_id"],
            "status": data.get("status") or "success",
        }

    async def ask(self, prompt: str, user_id: str, session_id: Optional[str] = None) -> str:
        """Free-text answer to a prompt."""
        result = await self.send_message(prompt, user_id=user_id, session_id=session_id)
        return result["response"]

    # ------------------------------------------------------------ analysis

    def _analysis_prompt(self, title: str, course_name: Optional[str],
                         description: Optional[str], text: Optional[str]) -> str:
        course = course_name or "Not specified"
        if text:
            return (
                "You are an expert programming instructor analyzing a programming assignment.\n\n"
                f"ASSIGNMENT DETAILS:\n- Title: {title}\n- Course: {course}\n"
                f"- Description: {description or 'No additional description provided'}\n\n"
                f"ASSIGNMENT CONTENT:\n{text}\n\n"
                "Identify the languages, frameworks, key concepts and requirements, then return "
                "ONLY JSON with core_milestones and custom_milestones (each with title, "
                "description, type and key_concepts), languages, difficulty_score (1-10) "
                "and prerequisites."
            )
        return (
            "Create learning milestones for this assignment based on the title and course.\n"
            f"Assignment: {title}\nCourse: {course}\n"
            "Return ONLY JSON with core_milestones, custom_milestones, languages, "
            "difficulty_score and prerequisites."
        )

    async def analyze_assignment(
        self,
        title: str,
        user_id: str,
        course_name: Optional[str] = None,
        description: Optional[str] = None,
        extracted_text: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Ask the agent for milestones and normalise its answer.

        Returns:
            Dict[str, Any]: concepts, languages, difficulty, prerequisites,
                estimated_hours and milestones

        Raises:
            AIAgentError: When the agent fails or the answer lacks milestones
        """
        prompt = self._analysis_prompt(title, course_name, description, extracted_text)
        response = await self.send_message(prompt, user_id=user_id)
        return self.parse_analysis(extract_json(response["response"]))

    @staticmethod
    def _points_reward(milestone: Dict[str, Any], index: int) -> int:
        kind = milestone.get("type")
        if kind == "code":
            return min(25, 15 + index * 2)
        if kind == "user_customized":
            return 20
        return min(20, 10 + index * 2)

    @staticmethod
    def _competency_check(milestone: Dict[str, Any]) -> str:
        kind = milestone.get("type")
        if kind == "code":
            return "Demonstrate working code that solves the problem"
        if kind == "user_customized":
            return "Complete the custom milestone as specified"
        return "Explain your understanding and approach"

    @staticmethod
    def _difficulty(milestones: List[Dict[str, Any]]) -> int:
        complexity = 0.0
        for milestone in milestones:
            kind = milestone.get("type")
            if kind == "code":
                complexity += 2
            elif kind == "user_customized":
                complexity += 1.5
            else:
                complexity += 1
            if len(milestone.get("key_concepts") or []) > 3:
                complexity += 0.5
        return max(1, min(10, round(complexity)))

    @staticmethod
    def _is_string_list(value: Any) -> bool:
        return isinstance(value, list) and all(isinstance(item, str) for item in value)

    def parse_analysis(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check the types of the agent's analysis JSON and transform it.

        Raises:
            AIAgentError: When a field has the wrong type or there are no milestones
        """
        if not isinstance(result.get("core_milestones"), list):
            raise AIAgentError("Invalid analysis result structure from AI agent - missing core_milestones array")
        custom = result.get("custom_milestones")
        if custom is not None and not isinstance(custom, list):
            raise AIAgentError("Invalid analysis result from AI agent - custom_milestones must be an array")

        milestones = result["core_milestones"] + (custom or [])
        if not milestones:
            raise AIAgentError("AI agent returned no milestones")
        for milestone in milestones:
            if not isinstance(milestone, dict):
                raise AIAgentError("Invalid analysis result from AI agent - each milestone must be an object")
            for field in ("title", "description", "type"):
                if milestone.get(field) is not None and not isinstance(milestone[field], str):
                    raise AIAgentError(f"Invalid analysis result from AI agent - milestone {field} must be text")
            concepts = milestone.get("key_concepts")
            if concepts is not None and not self._is_string_list(concepts):
                raise AIAgentError("Invalid analysis result from AI agent - key_concepts must be a list of strings")

        for field in ("languages", "prerequisites", "learning_gaps"):
            value = result.get(field)
            if value is not None and not self._is_string_list(value):
                raise AIAgentError(f"Invalid analysis result from AI agent - {field} must be a list of strings")

        return self.transform_analysis(result)

    def transform_analysis(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """Convert the agent's milestone output to the stored analysis shape."""
        all_milestones = list(result.get("core_milestones") or []) + list(result.get("custom_milestones") or [])

        concepts: List[str] = []
        for milestone in all_milestones:
            for concept in milestone.get("key_concepts") or []:
                if concept not in concepts:
                    concepts.append(concept)

        milestones = [
            {
                "title": m.get("title") or f"Milestone {i + 1}",
                "description": m.get("description") or "Complete this milestone",
                "competency_check": self._competency_check(m),
                "points_reward": self._points_reward(m, i),
            }
            for i, m in enumerate(all_milestones)
        ]

        try:
            difficulty = int(result.get("difficulty_score") or self._difficulty(all_milestones))
        except (TypeError, ValueError):
            difficulty = self._difficulty(all_milestones)

        return {
            "concepts": concepts,
            "languages": result.get("languages") or ["Unknown"],
            "difficulty": max(1, min(10, difficulty)),
            "prerequisites": result.get("prerequisites") or [],
            "estimated_hours": max(2, min(8, len(milestones) * 1.5)),
            "learning_gaps": result.get("learning_gaps") or [],
            "milestones": milestones,
        }

    # ------------------------------------------------------------ grading

    async def grade_milestone(
        self,
        assignment_title: str,
        milestone_title: str,
        competency_requirement: str,
        expected_concepts: List[str],
        answer: str,
        attempt_number: int,
        user_id: str
    ) -> Dict[str, Any]:
        """
        Grade a milestone answer.

        Raises:
            AIAgentError: When the agent fails or the grade is malformed
        """
        prompt = (
            "Please grade this student's milestone response. Return ONLY valid JSON with "
            "context_relevance_score, understanding_depth_score, completeness_score, "
            "final_score, passed, detailed_feedback, improvement_suggestions and next_steps.\n\n"
            f"- Assignment: {assignment_title}\n"
            f"- Milestone: {milestone_title}\n"
            f"- Competency Requirement: {competency_requirement}\n"
            f"- Expected Concepts: {', '.join(expected_concepts)}\n"
            f"- Student Answer: {answer}\n"
            f"- Attempt Number: {attempt_number}\n\n"
            "Context relevance weighs 40%, understanding depth 35%, completeness 25%. "
            "Pass if final_score >= 70 AND context_relevance_score >= 60."
        )
        response = await self.send_message(prompt, user_id=user_id)
        grade = extract_json(response["response"])

        if not isinstance(grade.get("final_score"), (int, float)) or not isinstance(grade.get("passed"), bool):
            raise AIAgentError("Invalid grading result structure from AI agent")
        return grade


ai_agent = AIAgentClient()


def get_ai_agent() -> AIAgentClient:
    """Dependency returning the shared agent client."""
    return ai_agent
