"""Narrator directive: the JSON block embedded in narrator replies.

The narrator writes prose and appends one JSON object between sentinels:

    The goblin snarls and lunges at you.
    <game_state>
    {"phase": "Conflict",
     "interaction": {"type": "Defense", "actionType": "Defend",
                     "allowedSkills": ["Athletics", "Fight"],
                     "difficulty": 3, "reason": "The goblin lunges"},
     "sceneData": {"npcs": [...], "aspects": [...]}}
    </game_state>

The sentinels and field names are the compatibility surface with any
narrator implementation and must not change.

Models here are deliberately loose: every field is optional and defaults are
filled at this boundary, so the rest of the code never has to ask whether a
key was present. Only a block that cannot be decoded at all is an error.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from fate_weaver.errors import DirectiveParseError, ValidationError
from fate_weaver.models import (
    FATE_ACTIONS,
    GAME_PHASES,
    NPC,
    FateAction,
    GamePhase,
    InteractionKind,
    PendingInteraction,
    SceneAspect,
    new_id,
    normalize_skill,
)

logger = logging.getLogger(__name__)

OPEN_TAG = "<game_state>"
CLOSE_TAG = "</game_state>"

_BLOCK_RE = re.compile(re.escape(OPEN_TAG) + r"([\s\S]*?)" + re.escape(CLOSE_TAG))
DEFAULT_NPC_STRESS = 3
MAX_STRESS_BOXES = 10


# ---------------------------------------------------------------------------
# Wire models (camelCase on the wire, snake_case in Python)
# ---------------------------------------------------------------------------

class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InteractionDirective(_Wire):
    type: InteractionKind = "Action"
    action_type: FateAction = Field(default="Overcome", alias="actionType")
    allowed_skills: list[str] = Field(default_factory=list, alias="allowedSkills")
    difficulty: int = 0
    reason: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _kind(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() == "defense":
            return "Defense"
        return "Action"

    @field_validator("action_type", mode="before")
    @classmethod
    def _action(cls, value: Any) -> Any:
        if isinstance(value, str):
            for action in FATE_ACTIONS:
                if action.lower() == value.strip().lower():
                    return action
        logger.warning("Directive actionType %r not recognised, using Overcome", value)
        return "Overcome"

    @field_validator("allowed_skills", mode="before")
    @classmethod
    def _skills(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        skills: list[str] = []
        for name in value:
            if not isinstance(name, str):
                continue
            try:
                skill = normalize_skill(name)
            except ValidationError:
                logger.warning("Directive names unknown skill %r — dropped", name)
                continue
            if skill not in skills:
                skills.append(skill)
        return skills

    @field_validator("difficulty", mode="before")
    @classmethod
    def _difficulty(cls, value: Any) -> int:
        if value is None or isinstance(value, bool):
            return 0
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            return 0

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    def to_pending(self) -> PendingInteraction:
        return PendingInteraction(
            type=self.type,
            action_type=self.action_type,
            allowed_skills=list(self.allowed_skills),
            difficulty=self.difficulty,
            description=self.reason,
        )


def _stress_track(value: Any) -> list[bool]:
    """Accept a box count or a list of marks; anything else gets the default.

    Tracks longer than MAX_STRESS_BOXES are cut to that length.
    """
    if isinstance(value, bool) or value is None:
        return [False] * DEFAULT_NPC_STRESS
    if isinstance(value, int):
        return [False] * min(max(0, value), MAX_STRESS_BOXES)
    if isinstance(value, list):
        return [bool(v) for v in value[:MAX_STRESS_BOXES]]
    return [False] * DEFAULT_NPC_STRESS


def _npc_from_wire(raw: dict[str, Any]) -> NPC:
    skills: dict[str, int] = {}
    raw_skills = raw.get("skills")
    if isinstance(raw_skills, dict):
        for name, rank in raw_skills.items():
            try:
                skills[str(name)] = int(rank)
            except (TypeError, ValueError, OverflowError):
                continue
    consequences = raw.get("consequences")
    if isinstance(consequences, dict):
        consequences = list(consequences.values())
    if not isinstance(consequences, list):
        consequences = []
    aspects = raw.get("aspects")
    if not isinstance(aspects, list):
        aspects = []
    return NPC(
        id=str(raw.get("id") or new_id()),
        name=str(raw.get("name") or "Unnamed"),
        description=str(raw.get("description") or ""),
        aspects=[str(a) for a in aspects if a],
        skills=skills,
        physical_stress=_stress_track(raw.get("physicalStress", raw.get("physical_stress"))),
        mental_stress=_stress_track(raw.get("mentalStress", raw.get("mental_stress"))),
        consequences=[str(c) for c in consequences if c],
    )


def _aspect_from_wire(raw: dict[str, Any]) -> SceneAspect:
    kind = "Boost" if str(raw.get("type", "")).strip().lower() == "boost" else "Situation"
    invokes = raw.get("freeInvokes", raw.get("free_invokes"))
    try:
        free_invokes = max(0, int(invokes))
    except (TypeError, ValueError, OverflowError):
        free_invokes = 1 if kind == "Boost" else 0
    description = raw.get("description")
    return SceneAspect(
        id=str(raw.get("id") or new_id()),
        name=str(raw.get("name") or ""),
        type=kind,
        description=description if isinstance(description, str) else None,
        free_invokes=free_invokes,
    )


class SceneData(_Wire):
    """Full-replacement scene composition. None means "leave as is"."""

    npcs: list[NPC] | None = None
    aspects: list[SceneAspect] | None = None

    @field_validator("npcs", mode="before")
    @classmethod
    def _npcs(cls, value: Any) -> list[NPC] | None:
        if not isinstance(value, list):
            return None
        return [_npc_from_wire(n) for n in value if isinstance(n, dict) and n.get("name")]

    @field_validator("aspects", mode="before")
    @classmethod
    def _aspects(cls, value: Any) -> list[SceneAspect] | None:
        if not isinstance(value, list):
            return None
        return [_aspect_from_wire(a) for a in value if isinstance(a, dict) and a.get("name")]


class Directive(_Wire):
    phase: GamePhase = "Narrative"
    interaction: InteractionDirective | None = None
    scene_data: SceneData | None = Field(default=None, alias="sceneData")

    @field_validator("phase", mode="before")
    @classmethod
    def _phase(cls, value: Any) -> str:
        if isinstance(value, str):
            for phase in GAME_PHASES:
                if phase.lower() == value.strip().lower():
                    return phase
        return "Narrative"

    @field_validator("interaction", "scene_data", mode="before")
    @classmethod
    def _object_or_none(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def split_directive(text: str) -> tuple[str, str | None]:
    """Separate narrative prose from the raw directive block.

    Returns (narrative, block). block is None if no opening sentinel is
    present. Only the first block is read; every block is stripped from the
    prose. An unterminated block runs to the end of the text.
    """
    match = _BLOCK_RE.search(text)
    if match:
        return _BLOCK_RE.sub("", text).strip(), match.group(1)
    if OPEN_TAG in text:
        narrative, block = text.split(OPEN_TAG, 1)
        return narrative.strip(), block
    return text.strip(), None


def _strip_fences(block: str) -> str:
    cleaned = block.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned.strip()


def parse_directive(block: str) -> Directive:
    """Decode a directive block, filling defaults for anything missing."""
    try:
        data = json.loads(_strip_fences(block))
    except (ValueError, RecursionError) as e:
        raise DirectiveParseError(f"Directive is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DirectiveParseError(
            f"Directive must be a JSON object, got {type(data).__name__}"
        )
    try:
        return Directive.model_validate(data)
    except PydanticValidationError as e:
        raise DirectiveParseError(f"Directive has invalid fields: {e}") from e
    except Exception as e:
        raise DirectiveParseError(f"Directive could not be read: {e}") from e


def scene_snapshot(npcs: list[NPC], aspects: list[SceneAspect]) -> dict[str, Any]:
    """Current roster and aspects in the same shape the narrator sends back."""
    return {
        "npcs": [
            {
                "id": n.id,
                "name": n.name,
                "description": n.description,
                "aspects": list(n.aspects),
                "skills": dict(n.skills),
                "physicalStress": list(n.physical_stress),
                "mentalStress": list(n.mental_stress),
                "consequences": list(n.consequences),
            }
            for n in npcs
        ],
        "aspects": [
            {
                "id": a.id,
                "name": a.name,
                "type": a.type,
                "freeInvokes": a.free_invokes,
                **({"description": a.description} if a.description else {}),
            }
            for a in aspects
        ],
    }

