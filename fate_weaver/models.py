"""Core domain models.

Every layer (entity store, interaction machine, controller, storage, API)
operates on these types. Pydantic validates them at every data boundary.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, computed_field, field_validator

from fate_weaver.dice import ladder_label
from fate_weaver.errors import ValidationError


class SkillName(str, Enum):
    ACADEMICS = "Academics"
    ATHLETICS = "Athletics"
    BURGLARY = "Burglary"
    CONTACTS = "Contacts"
    CRAFTS = "Crafts"
    DECEIVE = "Deceive"
    DRIVE = "Drive"
    EMPATHY = "Empathy"
    FIGHT = "Fight"
    INVESTIGATE = "Investigate"
    LORE = "Lore"
    NOTICE = "Notice"
    PHYSIQUE = "Physique"
    PROVOKE = "Provoke"
    RAPPORT = "Rapport"
    RESOURCES = "Resources"
    SHOOT = "Shoot"
    STEALTH = "Stealth"
    WILL = "Will"


SKILL_LIST: list[str] = [s.value for s in SkillName]
_SKILL_LOOKUP = {s.lower(): s for s in SKILL_LIST}


def normalize_skill(name: str) -> str:
    """Canonical skill name for any casing; raises ValidationError if unknown."""
    key = name.strip().lower()
    if key in _SKILL_LOOKUP:
        return _SKILL_LOOKUP[key]
    raise ValidationError(f"Unknown skill: {name}")


def new_id() -> str:
    return uuid.uuid4().hex[:12]


FateAction = Literal["Overcome", "Create Advantage", "Attack", "Defend"]
GamePhase = Literal["Narrative", "Challenge", "Contest", "Conflict"]
ItemType = Literal["weapon", "armor", "gear", "consumable"]
StressTrack = Literal["physical", "mental"]
ConsequenceSlot = Literal["mild", "moderate", "severe"]
AspectKind = Literal["Situation", "Boost"]
InteractionKind = Literal["Action", "Defense"]
Sender = Literal["player", "gm", "system"]
MessageKind = Literal["narrative", "meta", "error"]

GAME_PHASES: tuple[str, ...] = ("Narrative", "Challenge", "Contest", "Conflict")
FATE_ACTIONS: tuple[str, ...] = ("Overcome", "Create Advantage", "Attack", "Defend")


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------

class Item(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    type: ItemType = "gear"
    description: str = ""
    bonus: int = 0  # e.g. Weapon:2
    aspect: str | None = None
    equipped: bool = False


class Consequences(BaseModel):
    """Three severity slots; an empty string means the slot is free."""

    mild: str = ""
    moderate: str = ""
    severe: str = ""

    def filled(self) -> dict[str, str]:
        return {slot: text for slot, text in self.model_dump().items() if text}


class Character(BaseModel):
    """The player character."""

    name: str
    pronouns: str = "they/them"
    high_concept: str = ""
    trouble: str = ""
    relationship: str = ""
    aspect1: str = ""
    aspect2: str = ""
    backstory: str = ""
    skills: dict[str, int] = Field(default_factory=dict)
    stunts: list[str] = Field(default_factory=list)
    refresh: int = 3
    physical_stress: list[bool] = Field(default_factory=list)
    mental_stress: list[bool] = Field(default_factory=list)
    consequences: Consequences = Field(default_factory=Consequences)
    inventory: list[Item] = Field(default_factory=list)
    full_defense: bool = False  # transient: +2 on the next Defend roll only

    @field_validator("skills")
    @classmethod
    def _canonical_skills(cls, value: dict[str, int]) -> dict[str, int]:
        return {normalize_skill(name): rank for name, rank in value.items()}

    def skill_rank(self, skill: str) -> int:
        return self.skills.get(skill, 0)

    def aspects(self) -> list[str]:
        return [
            a for a in (self.high_concept, self.trouble, self.relationship,
                        self.aspect1, self.aspect2)
            if a
        ]


class NPC(BaseModel):
    """A non-player character; description stands in for identity aspects."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    aspects: list[str] = Field(default_factory=list)
    skills: dict[str, int] = Field(default_factory=dict)
    physical_stress: list[bool] = Field(default_factory=lambda: [False] * 3)
    mental_stress: list[bool] = Field(default_factory=lambda: [False] * 3)
    consequences: list[str] = Field(default_factory=list)


class SceneAspect(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    type: AspectKind = "Situation"
    description: str | None = None
    free_invokes: int = Field(default=0, ge=0)


class EntityStore(BaseModel):
    """Character, NPC roster and scene aspects: the game's mutable truth."""

    character: Character
    npcs: list[NPC] = Field(default_factory=list)
    aspects: list[SceneAspect] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Interaction and log
# ---------------------------------------------------------------------------

class PendingInteraction(BaseModel):
    """The roll the narrator is waiting for."""

    type: InteractionKind = "Action"
    action_type: FateAction = "Overcome"
    allowed_skills: list[str] = Field(default_factory=list)
    difficulty: int = 0
    description: str = ""

    @computed_field
    @property
    def difficulty_label(self) -> str:
        return ladder_label(self.difficulty)


class RollRecord(BaseModel):
    skill: str
    bonus: int
    faces: list[int]
    result: int  # raw dice total
    total: int  # result + bonus
    action: FateAction | None = None
    vs: int | None = None


class ChatMessage(BaseModel):
    """A single entry in the append-only game log."""

    seq: int
    turn_id: int
    sender: Sender
    kind: MessageKind = "narrative"
    text: str
    roll: RollRecord | None = None
