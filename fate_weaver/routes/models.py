"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from fate_weaver.models import AspectKind, ConsequenceSlot, ItemType, StressTrack


class CharacterBody(BaseModel):
    name: str = ""
    pronouns: str = ""
    high_concept: str = ""
    trouble: str = ""
    relationship: str = ""
    aspect1: str = ""
    aspect2: str = ""
    backstory: str = ""
    skills: dict[int, list[str]] = Field(default_factory=dict)  # rank -> skill names
    stunts: list[str] = Field(default_factory=list)
    refresh: int = 3


class CreateGame(BaseModel):
    title: str
    setting: str | None = None
    character: CharacterBody


class MessageBody(BaseModel):
    text: str


class RollBody(BaseModel):
    skill: str
    narrative: str = ""


class FatePointsBody(BaseModel):
    delta: int


class StressBody(BaseModel):
    ref: str = "player"
    track: StressTrack
    index: int


class ConsequenceBody(BaseModel):
    slot: ConsequenceSlot
    text: str = ""


class NpcConsequenceBody(BaseModel):
    text: str


class ItemBody(BaseModel):
    name: str
    type: ItemType = "gear"
    bonus: int = 0
    description: str = ""


class AspectBody(BaseModel):
    name: str
    type: AspectKind = "Situation"
    free_invokes: int | None = None
    description: str | None = None


class CheckConnectionBody(BaseModel):
    provider_url: str
    api_key: str = ""
    provider_format: str = "openai"
