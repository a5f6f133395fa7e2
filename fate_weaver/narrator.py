"""Narrator gateway — one conversation with the LLM game master.

A `NarratorSession` is created when a new game starts and closed when the
next one starts; the controller holds it explicitly. The session owns the
rendered system instruction and the conversation so far.

Per turn:
  1. Build the user message: player text, optional [SYSTEM INFO] (roll
     outcome, status) and the current scene as sceneData JSON.
  2. Call the LLM with system + recent history + the new message.
  3. Split the reply into narrative and <game_state> directive.
  4. Record the exchange in history — only once the reply was usable.

A reply whose directive block is malformed still yields its narrative, with
directive=None and the parse error attached. Transport failures, empty
replies and sends on a closed session raise GatewayError.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, Field

from fate_weaver.directive import Directive, parse_directive, scene_snapshot, split_directive
from fate_weaver.errors import DirectiveParseError, GatewayError
from fate_weaver.llm import LLM, ChatTurn, LLMError
from fate_weaver.models import NPC, Character, SceneAspect
from fate_weaver.prompts import narrator_instruction, opening_prompt

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 40


class NarratorRequest(BaseModel):
    player_text: str
    system_context: str | None = None
    npcs: list[NPC] = Field(default_factory=list)
    aspects: list[SceneAspect] = Field(default_factory=list)


class NarratorResponse(BaseModel):
    text: str
    directive: Directive | None = None
    directive_error: str | None = None


def interpret_reply(raw: str) -> NarratorResponse:
    """Turn raw narrator output into narrative text plus an optional directive."""
    narrative, block = split_directive(raw)
    if block is None:
        return NarratorResponse(text=narrative)
    try:
        directive = parse_directive(block)
    except DirectiveParseError as e:
        logger.warning("Narrator directive skipped: %s", e)
        return NarratorResponse(text=narrative, directive_error=str(e))
    return NarratorResponse(text=narrative, directive=directive)


def build_user_message(request: NarratorRequest) -> str:
    parts = [request.player_text.strip()]
    if request.system_context:
        parts.append(f"[SYSTEM INFO]: {request.system_context.strip()}")
    snapshot = scene_snapshot(request.npcs, request.aspects)
    parts.append(f"[SCENE DATA]: {json.dumps(snapshot)}")
    return "\n\n".join(p for p in parts if p)


class NarratorSession:
    """An explicit narrator conversation for one game."""

    def __init__(
        self,
        llm: LLM,
        system_prompt: str,
        history: list[ChatTurn] | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._llm = llm
        self.system_prompt = system_prompt
        self.history: list[ChatTurn] = list(history or [])
        self.history_limit = history_limit
        self.closed = False

    @classmethod
    def create(
        cls,
        llm: LLM,
        character: Character,
        setting: str,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> NarratorSession:
        return cls(llm, narrator_instruction(character, setting), history_limit=history_limit)

    def close(self) -> None:
        self.closed = True
        self.history = []

    async def open(self, character: Character, setting: str) -> NarratorResponse:
        """Ask the narrator to introduce the first scene."""
        return await self._exchange("intro", opening_prompt(character, setting))

    async def send(self, request: NarratorRequest) -> NarratorResponse:
        return await self._exchange("turn", build_user_message(request))

    def _messages(self, content: str) -> list[ChatTurn]:
        recent = self.history[-self.history_limit:] if self.history_limit else []
        return [
            {"role": "system", "content": self.system_prompt},
            *recent,
            {"role": "user", "content": content},
        ]

    async def _exchange(self, stage: str, content: str) -> NarratorResponse:
        if self.closed:
            raise GatewayError("Narrator session is closed")
        try:
            raw = await self._llm(stage, self._messages(content))
        except LLMError as e:
            raise GatewayError(str(e)) from e
        if not raw or not raw.strip():
            raise GatewayError("Narrator returned an empty reply")

        response = interpret_reply(raw)
        self.history.append({"role": "user", "content": content})
        self.history.append({"role": "assistant", "content": raw.strip()})
        logger.debug(
            "narrator %s reply len=%d directive=%s",
            stage, len(response.text), response.directive is not None,
        )
        return response
