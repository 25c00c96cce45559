"""OpenAI-powered competency grading for assessment conversations."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from flask import current_app
from openai import OpenAI, OpenAIError

from services.pdf_text import excerpt

logger = logging.getLogger(__name__)

MAX_SOURCES_PER_SKILL = 3

SYSTEM_PROMPTS = {
    "en": "You are an expert evaluator specialized in determining student competency levels in specific skills.",
    "es": (
        "Eres un evaluador experto especializado en determinar el nivel de competencia "
        "de estudiantes en habilidades específicas."
    ),
}

RETRY_MESSAGES = {
    "en": "Sorry, there was an error processing your response. Please try again.",
    "es": "Lo siento, hubo un error al procesar tu respuesta. Por favor, intenta de nuevo.",
}

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class GradingError(RuntimeError):
    """Raised when the AI service cannot produce a grading reply."""


@dataclass
class SkillVerdict:
    skill_id: int
    skill_level_id: int
    feedback: str = ""


@dataclass
class GradingReply:
    can_determine_level: bool
    message: str
    skill_results: List[SkillVerdict] = field(default_factory=list)
    parsed: bool = True

    def to_dict(self) -> dict:
        return {
            "canDetermineLevel": self.can_determine_level,
            "message": self.message,
            "skillResults": [
                {"skillId": v.skill_id, "skillLevelId": v.skill_level_id, "feedback": v.feedback}
                for v in self.skill_results
            ],
        }


def _get_api_key() -> str:
    api_key = current_app.config.get("OPENAI_API_KEY")
    if not api_key:
        raise GradingError("OPENAI_API_KEY is not configured.")
    return api_key


def _call_openai(messages: List[dict], max_tokens: int, temperature: float) -> str:
    model = current_app.config.get("GRADING_MODEL", "gpt-4o")
    client = OpenAI(api_key=_get_api_key())
    try:
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            n=1,
        )
    except OpenAIError as exc:
        raise GradingError(f"OpenAI API error: {exc}") from exc
    try:
        text = response.choices[0].message.content
    except (AttributeError, IndexError) as exc:
        raise GradingError("OpenAI response did not contain text output.") from exc
    return (text or "").strip()


def _skills_block(skills: Sequence) -> str:
    blocks = []
    for skill in skills:
        levels = "\n".join(
            f"- Level ID {level.id} ({level.label}): {level.description}" for level in skill.levels
        )
        block = f"Skill ID {skill.id}: {skill.name}\nDescription: {skill.description}\nLevels:\n{levels}"
        sources = [s for s in skill.sources if s.pdf_text][:MAX_SOURCES_PER_SKILL]
        if sources:
            refs = "\n".join(f'* "{s.title}": {excerpt(s.pdf_text)}' for s in sources)
            block += f"\nReference material:\n{refs}"
        blocks.append(block)
    return "\n\n".join(blocks)


def _history_block(history: Sequence) -> str:
    return "\n".join(
        f"{'Student' if msg.message_type == 'student' else 'AI'}: {msg.message_text}" for msg in history
    )


def build_prompt(assessment, history: Sequence, student_reply: str, turn_count: int) -> str:
    max_turns = assessment.max_turns
    instructions = [
        "Analyze if the student's response is sufficient to determine their competency level",
        "If the level CANNOT be determined, ask for more information or clarify the response",
        "If the level CAN be determined, assign the most appropriate level for each skill",
        f"Consider that the maximum number of turns is: {max_turns}",
        "IMPORTANT: Use ONLY the exact IDs provided above for skillId and skillLevelId",
    ]
    if turn_count >= max_turns:
        instructions.append("The maximum number of turns has been reached: you MUST determine the level now")
    language = "Spanish" if assessment.output_language == "es" else "English"
    numbered = "\n".join(f"{i}. {line}" for i, line in enumerate(instructions, start=1))
    return f"""Evaluate the student's response and determine if their competency level can be established.

EVALUATION CONTEXT:
- Case: {assessment.case_text}
- Evaluation context: {assessment.evaluation_context or ''}
- Student's response: {student_reply}
- Current turn: {turn_count} of {max_turns} maximum

SKILLS TO EVALUATE:
{_skills_block(assessment.skills)}

CONVERSATION HISTORY:
{_history_block(history)}

INSTRUCTIONS:
{numbered}

Write the "message" and every "feedback" in {language}.
Respond ONLY with valid JSON, no markdown, no additional explanations:
{{
  "canDetermineLevel": true/false,
  "message": "Message for the student",
  "skillResults": [
    {{"skillId": exact_skill_number, "skillLevelId": exact_level_number, "feedback": "Specific feedback for this skill"}}
  ]
}}

If canDetermineLevel is false, skillResults should be empty or not included.
If canDetermineLevel is true, it must include a result for each skill."""


def parse_grading_reply(text: str, language: str = "en") -> GradingReply:
    """Decode the grader's JSON; anything malformed becomes a retry message."""
    fallback = GradingReply(
        can_determine_level=False,
        message=RETRY_MESSAGES.get(language, RETRY_MESSAGES["en"]),
        parsed=False,
    )
    cleaned = _FENCE.sub("", (text or "").strip()).strip()
    try:
        payload = json.loads(cleaned)
    except ValueError:
        logger.warning("Unparseable grading reply: %r", text[:500] if text else text)
        return fallback
    if not isinstance(payload, dict):
        return fallback
    can_determine = payload.get("canDetermineLevel")
    message = payload.get("message")
    if not isinstance(can_determine, bool) or not isinstance(message, str):
        logger.warning("Grading reply is missing canDetermineLevel or message")
        return fallback
    verdicts = []
    if can_determine:
        try:
            for item in payload.get("skillResults") or []:
                verdicts.append(
                    SkillVerdict(
                        skill_id=int(item["skillId"]),
                        skill_level_id=int(item["skillLevelId"]),
                        feedback=str(item.get("feedback") or ""),
                    )
                )
        except (KeyError, TypeError, ValueError):
            logger.warning("Grading reply has malformed skillResults")
            return fallback
    return GradingReply(can_determine_level=can_determine, message=message, skill_results=verdicts)


def evaluate_reply(assessment, history: Sequence, student_reply: str) -> GradingReply:
    """Ask the grader about the latest student reply.

    ``history`` is the transcript so far, including ``student_reply``.
    """
    language = assessment.output_language or "en"
    turn_count = sum(1 for msg in history if msg.message_type == "student")
    messages = [
        {"role": "system", "content": SYSTEM_PROMPTS.get(language, SYSTEM_PROMPTS["en"])},
        {"role": "user", "content": build_prompt(assessment, history, student_reply, turn_count)},
    ]
    config = current_app.config
    text = _call_openai(
        messages,
        max_tokens=config.get("GRADING_MAX_TOKENS", 4000),
        temperature=config.get("GRADING_TEMPERATURE", 0.3),
    )
    return parse_grading_reply(text, language)


def final_grade(ranks: Sequence[tuple]) -> float:
    """Mean of ``rank / level_count`` over ``(rank, level_count)`` pairs, scaled to 0-100."""
    scores = [rank / count for rank, count in ranks if count]
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores) * 100, 2)


def probe() -> Dict[str, Optional[str]]:
    text = _call_openai([{"role": "user", "content": "Hello"}], max_tokens=10, temperature=0)
    return {"model": current_app.config.get("GRADING_MODEL", "gpt-4o"), "reply": text}
