from typing import Any, Optional

from nexus_desk.agents.output import HiddenBlock
from nexus_desk.locales import language_name

from .base import AIProfile, ProfileSelection, PromptContext

LAI_TURNER_COMPANY_ID = "fe6b59cd-8f99-47ed-be5a-2a0931872070"
LAI_TURNER_NAME = "lai & turner"

ATTORNEY_SUMMARY = HiddenBlock("[ATTORNEY_SUMMARY]", "[/ATTORNEY_SUMMARY]")

# canonical field -> accepted keys, first non-empty wins
STRING_FIELDS = {
    "full_name": ("full_name", "name", "client_name"),
    "first_name": ("first_name", "given_name"),
    "last_name": ("last_name", "family_name"),
    "pseudonym": ("pseudonym", "nickname"),
    "age_range": ("age_range", "approx_age"),
    "country_of_origin": ("country_of_origin", "origin_country"),
    "current_location": ("current_location", "location", "city"),
    "legal_status": ("legal_status", "status"),
    "primary_goal": ("primary_goal", "goal", "objective"),
    "urgency_level": ("urgency_level", "urgency", "urgency_rating"),
    "practice_area": ("practice_area", "practice", "area"),
    "main_issue": ("main_issue", "issue", "matter"),
}

LIST_FIELDS = {
    "key_concerns": ("key_concerns", "concerns"),
    "next_steps": ("next_steps", "proposed_steps"),
    "risk_flags": ("risk_flags", "risks"),
}

DEADLINE_KEYS = ("deadlines", "timeline", "milestones")


def _first_string(data: dict[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        digits = value.strip().split(" ")[0]
        if digits.isdigit():
            return int(digits)
    return None


def _string_list(data: dict[str, Any], keys: tuple[str, ...]) -> Optional[list[str]]:
    for key in keys:
        value = data.get(key)
        if value:
            if not isinstance(value, list):
                return None
            cleaned = [entry.strip() for entry in value if isinstance(entry, str) and entry.strip()]
            return cleaned or None
    return None


def _format_deadline(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry.strip() or None
    if isinstance(entry, dict):
        parts = [
            entry[part].strip()
            for part in ("description", "date", "timeframe")
            if isinstance(entry.get(part), str) and entry[part].strip()
        ]
        return " - ".join(parts) or None
    return None


def normalize_intake_payload(value: Any) -> Optional[dict[str, Any]]:
    """Map the loosely-keyed intake object a model returns onto canonical field names.

    Returns None when ``value`` is not an object or carries nothing recognizable.
    """
    if not isinstance(value, dict):
        return None

    payload: dict[str, Any] = {}
    for field, keys in STRING_FIELDS.items():
        found = _first_string(value, keys)
        if found is not None:
            payload[field] = found

    age = _parse_int(value.get("age"))
    if age is not None:
        payload["age"] = age

    for field, keys in LIST_FIELDS.items():
        found = _string_list(value, keys)
        if found is not None:
            payload[field] = found

    for key in DEADLINE_KEYS:
        entries = value.get(key)
        if isinstance(entries, list) and entries:
            deadlines = [d for d in (_format_deadline(e) for e in entries) if d]
            if deadlines:
                payload["deadlines"] = deadlines
            break

    return payload or None


class LegalIntakeProfile(AIProfile):
    """Structured first-contact intake for the Lai & Turner law firm tenant."""

    key = "lai-turner-intake"
    aliases = ("lai_turner_intake",)
    hidden_block = ATTORNEY_SUMMARY
    extra_output_keys = {
        "intakeData": (
            "optional object with the intake fields collected so far "
            "(full_name, age, country_of_origin, current_location, legal_status, primary_goal, "
            "urgency_level, practice_area, deadlines, risk_flags)."
        ),
    }

    def matches(self, selection: ProfileSelection) -> bool:
        if selection.company_id == LAI_TURNER_COMPANY_ID:
            return True
        name = (selection.company_name or "").strip().lower()
        return bool(name) and LAI_TURNER_NAME in name

    def build_system_instruction(self, ctx: PromptContext) -> str:
        if ctx.knowledge_context:
            knowledge = (
                "You ALSO have access to Lai & Turner's COMPANY KNOWLEDGE BASE (FAQ) below, with official "
                "information about their practice areas, typical questions and internal rules. Use it as an "
                f"authoritative source when it is relevant to the user's question.\n\n{ctx.knowledge_context}"
            )
        else:
            knowledge = (
                "No dedicated FAQ entries are loaded for this ticket. You MUST still behave as a legal intake "
                "assistant (not IT), collect key intake information and propose next steps with the firm."
            )

        output_format = self._output_format_instruction(
            ctx,
            "true if you recommend a consultation or explicit escalation to an attorney.",
        )

        sections = [
            """You are the virtual intake assistant for Lai & Turner Law Firm, a U.S. law firm that handles Family Law, Personal Injury, Criminal Defense and Business Immigration matters.
You are NOT an IT help desk and NOT a Level 1 technical support agent.

Your job is NOT to give final legal advice or a detailed legal strategy. Your job is to:
- Understand the client's situation in their own words.
- Identify which practice area(s) their issue belongs to.
- Collect enough information to open or enrich an intake file.
- Explain in plain language what Lai & Turner typically does in such cases.
- Suggest reasonable next steps (consultation, documents to prepare, timelines).

Use plain language and an empathetic tone. Never promise a specific outcome. Always remind the user that only an attorney can provide legal advice and that this chat alone does not create an attorney-client relationship.""",
            knowledge,
            self._company_context(ctx),
            """When the user talks about their own situation, gently collect, step by step and when not yet known: full or preferred name, age, country of origin, current location, current legal status, the main facts, their main goal, important deadlines or upcoming dates, how urgent the situation feels, and their preferred contact method. If the user does not want to answer a question, acknowledge it and move on.

Before closing or escalating, summarize what you understood, explain the typical next steps with Lai & Turner, and ask for the user's availability for a consultation.""",
            f"""At the very end of "responseText" you MUST include a block:

{ATTORNEY_SUMMARY.start_marker}
(Concise summary for the attorney only: practice area(s), identity elements, facts and goals, urgency or red flags, suggested next steps, the client's availability for a consultation.)
{ATTORNEY_SUMMARY.end_marker}

Everything inside this block is INTERNAL ONLY and will be stored on the ticket as an internal note.""",
            f"Based on the full conversation history, continue the conversation in {language_name(ctx.language)}.",
            output_format,
        ]
        return "\n\n".join(section for section in sections if section)

    def extract_intake(self, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        return normalize_intake_payload(data.get("intakeData"))
