"""Turn/scene controller — runs one game end-to-end.

The controller owns the entity store, fate points, phase, interaction
machine, message log, dice RNG and the narrator session. Every event is
processed to completion before the next is accepted:

  submit_message   player intent -> narrator -> directive
  submit_roll      pending roll -> dice -> narrator (roll outcome as context)
  end_scene        clear stress/aspects locally -> "scene ends" message
  concede          +1 fate point locally -> "I concede" message

While the narrator call is in flight `busy` is set and new submissions raise
BusyError; nothing is queued. Log entries for a turn are staged and only
committed once the narrator reply has been received and parsed, in the order
player input -> dice/system result -> narrator response. If the narrator
fails, a single error entry is logged instead and no entity, phase or
interaction state changes beyond returning to Idle.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel, Field

from fate_weaver import entities
from fate_weaver.dice import roll
from fate_weaver.errors import BusyError, GatewayError, ValidationError
from fate_weaver.interaction import InteractionMachine, InteractionState, resolve_roll
from fate_weaver.llm import LLM, ChatTurn
from fate_weaver.models import (
    AspectKind,
    Character,
    ChatMessage,
    ConsequenceSlot,
    EntityStore,
    GamePhase,
    ItemType,
    MessageKind,
    RollRecord,
    Sender,
    StressTrack,
    normalize_skill,
)
from fate_weaver.narrator import DEFAULT_HISTORY_LIMIT, NarratorRequest, NarratorResponse, NarratorSession
from fate_weaver.prompts import status_context

logger = logging.getLogger(__name__)

SCENE_END_MESSAGE = "The scene ends. Introduce the next scene."
CONCEDE_MESSAGE = "I concede."
CONCESSION_FATE_POINTS = 1


class NarratorState(BaseModel):
    system_prompt: str
    history: list[ChatTurn] = Field(default_factory=list)


class GameSnapshot(BaseModel):
    """Everything needed to resume a game."""

    setting: str
    store: EntityStore
    fate_points: int
    phase: GamePhase = "Narrative"
    interaction: InteractionState
    log: list[ChatMessage] = Field(default_factory=list)
    turn_id: int = 0
    narrator: NarratorState | None = None


@dataclass
class _Entry:
    sender: Sender
    text: str
    kind: MessageKind = "narrative"
    roll: RollRecord | None = None


class GameController:
    def __init__(
        self,
        llm: LLM,
        *,
        rng: random.Random | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._llm = llm
        self._history_limit = history_limit
        self.rng = rng or random.Random()
        self.session: NarratorSession | None = None
        self.store: EntityStore | None = None
        self.setting = ""
        self.fate_points = 0
        self.phase: GamePhase = "Narrative"
        self.interaction = InteractionMachine()
        self.log: list[ChatMessage] = []
        self.busy = False
        self._turn_id = 0

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self.store is not None and self.session is not None

    @property
    def can_concede(self) -> bool:
        return self.phase == "Conflict"

    @property
    def character(self) -> Character:
        return self._require_store().character

    def _require_store(self) -> EntityStore:
        if self.store is None:
            raise ValidationError("No game in progress")
        return self.store

    def _check_ready(self) -> None:
        if self.busy:
            raise BusyError("The narrator is still responding")
        if not self.started:
            raise ValidationError("No game in progress")

    def _commit(self, entries: list[_Entry]) -> list[ChatMessage]:
        """Append staged entries to the log as one turn."""
        self._turn_id += 1
        seq = self.log[-1].seq if self.log else 0
        committed: list[ChatMessage] = []
        for entry in entries:
            seq += 1
            committed.append(ChatMessage(
                seq=seq, turn_id=self._turn_id,
                sender=entry.sender, kind=entry.kind,
                text=entry.text, roll=entry.roll,
            ))
        self.log.extend(committed)
        return committed

    def _request(self, player_text: str, system_context: str | None = None) -> NarratorRequest:
        store = self._require_store()
        return NarratorRequest(
            player_text=player_text,
            system_context=system_context,
            npcs=store.npcs,
            aspects=store.aspects,
        )

    # ------------------------------------------------------------------
    # Narrator round trip
    # ------------------------------------------------------------------

    async def _run_turn(
        self,
        staged: list[_Entry],
        call: Callable[[], Awaitable[NarratorResponse]],
    ) -> NarratorResponse | None:
        """Await the narrator, then commit the turn and apply its directive.

        Returns None if the narrator failed; the failure is logged as one
        error entry and nothing else in `staged` is committed.
        """
        self.busy = True
        try:
            response = await call()
        except GatewayError as e:
            logger.warning("narrator turn failed: %s", e)
            self._commit([_Entry("system", f"The narrator is silent: {e}", "error")])
            return None
        finally:
            self.busy = False

        self._commit([*staged, _Entry("gm", response.text)])
        self._apply_directive(response)
        return response

    def _apply_directive(self, response: NarratorResponse) -> None:
        directive = response.directive
        if directive is None:
            self.interaction.on_directive(None)
            return

        self.phase = directive.phase
        scene = directive.scene_data
        if scene is not None:
            store = self._require_store()
            if scene.npcs is not None:
                store = entities.upsert_npc_roster(store, scene.npcs)
            if scene.aspects is not None:
                store = entities.replace_scene_aspects(store, scene.aspects)
            self.store = store
        self.interaction.on_directive(directive)
        if self.interaction.pending is not None:
            pending = self.interaction.pending
            logger.debug(
                "awaiting %s roll (%s) vs %d", pending.action_type, pending.type, pending.difficulty,
            )

    # ------------------------------------------------------------------
    # Game lifecycle
    # ------------------------------------------------------------------

    async def start_new_game(
        self,
        character: Character,
        setting: str,
        fate_points: int | None = None,
    ) -> NarratorResponse | None:
        """Reset all state, open a fresh narrator session and log its intro.

        Fate points start at the character's refresh unless given.
        """
        if self.busy:
            raise BusyError("The narrator is still responding")
        if self.session is not None:
            self.session.close()

        session = NarratorSession.create(
            self._llm, character, setting, history_limit=self._history_limit,
        )
        self.session = session
        self.store = EntityStore(character=character)
        self.setting = setting
        self.fate_points = max(0, character.refresh if fate_points is None else fate_points)
        self.phase = "Narrative"
        self.interaction = InteractionMachine()
        self.log = []
        self._turn_id = 0
        logger.info("new game for %s: %s", character.name, setting)

        return await self._run_turn([], lambda: session.open(character, setting))

    def end_game(self) -> None:
        if self.session is not None:
            self.session.close()
        self.session = None

    # ------------------------------------------------------------------
    # Player events
    # ------------------------------------------------------------------

    async def submit_message(self, text: str) -> NarratorResponse | None:
        """Free-form intent. Drops any pending roll."""
        self._check_ready()
        if not text or not text.strip():
            raise ValidationError("Message text is required")

        self.interaction.on_message()
        request = self._request(text.strip())
        session = self.session
        return await self._run_turn(
            [_Entry("player", text.strip())],
            lambda: session.send(request),
        )

    async def submit_roll(self, skill: str, narrative: str = "") -> NarratorResponse | None:
        """Resolve the pending roll with `skill` and send the outcome to the narrator."""
        self._check_ready()
        if not self.interaction.awaiting_roll:
            raise ValidationError("No roll is pending")
        if not skill or not skill.strip():
            raise ValidationError("A skill is required to roll")
        skill = normalize_skill(skill)

        store = self._require_store()
        pending = self.interaction.take_pending()
        dice = roll(self.rng)
        resolution = resolve_roll(pending, store.character, skill, dice)
        logger.debug("roll %s faces=%s total=%d", skill, dice.faces, resolution.record.total)

        staged: list[_Entry] = []
        if narrative.strip():
            staged.append(_Entry("player", narrative.strip()))
        staged.append(_Entry("system", resolution.log_text, "meta", resolution.record))

        context = "\n\n".join([
            resolution.narrator_context,
            status_context(store.character, store.npcs, store.aspects),
            "Interpret this result based on the player's narrative and their current status.",
        ])
        request = self._request(narrative.strip() or f"I roll {skill}.", context)
        session = self.session
        response = await self._run_turn(staged, lambda: session.send(request))

        if response is not None and resolution.full_defense_used:
            character = self.character.model_copy(update={"full_defense": False})
            self.store = self._require_store().model_copy(update={"character": character})
        return response

    async def end_scene(self) -> NarratorResponse | None:
        """Clear stress and scene aspects, then let the narrator open the next scene."""
        self._check_ready()
        self.store = entities.clear_scene_state(self._require_store())
        self._commit([_Entry("system", "The scene ends. Stress and scene aspects are cleared.", "meta")])
        logger.info("scene ended")
        return await self.submit_message(SCENE_END_MESSAGE)

    async def concede(self) -> NarratorResponse | None:
        """Concede the conflict for +1 fate point.

        Simplified payout: consequences taken in the conflict are not counted.
        """
        self._check_ready()
        self.adjust_fate_points(CONCESSION_FATE_POINTS)
        logger.info("player conceded")
        return await self.submit_message(CONCEDE_MESSAGE)

    def adjust_fate_points(self, delta: int) -> int:
        self.fate_points = max(0, self.fate_points + delta)
        return self.fate_points

    def declare_full_defense(self) -> None:
        """+2 to the next Defend roll."""
        if self.busy:
            raise BusyError("The narrator is still responding")
        character = self.character.model_copy(update={"full_defense": True})
        self.store = self._require_store().model_copy(update={"character": character})
        self._commit([_Entry("system", "Full defense: +2 to your next defend roll.", "meta")])

    # ------------------------------------------------------------------
    # Sheet edits (pure store transforms)
    # ------------------------------------------------------------------

    def toggle_stress(self, ref: str, track: StressTrack, index: int) -> EntityStore:
        self.store = entities.toggle_stress(self._require_store(), ref, track, index)
        return self.store

    def set_consequence(self, slot: ConsequenceSlot, text: str) -> EntityStore:
        self.store = entities.set_consequence(self._require_store(), slot, text)
        return self.store

    def add_item(
        self, name: str, type: ItemType = "gear", bonus: int = 0, description: str = "",
    ) -> EntityStore:
        self.store = entities.add_item(self._require_store(), name, type, bonus, description)
        return self.store

    def remove_item(self, item_id: str) -> EntityStore:
        self.store = entities.remove_item(self._require_store(), item_id)
        return self.store

    def toggle_equip(self, item_id: str) -> EntityStore:
        self.store = entities.toggle_equip(self._require_store(), item_id)
        return self.store

    def clear_inventory(self) -> EntityStore:
        self.store = entities.clear_inventory(self._require_store())
        return self.store

    def add_scene_aspect(
        self,
        name: str,
        kind: AspectKind = "Situation",
        free_invokes: int | None = None,
        description: str | None = None,
    ) -> EntityStore:
        self.store = entities.add_scene_aspect(
            self._require_store(), name, kind, free_invokes, description,
        )
        return self.store

    def remove_scene_aspect(self, aspect_id: str) -> EntityStore:
        self.store = entities.remove_scene_aspect(self._require_store(), aspect_id)
        return self.store

    def spend_free_invoke(self, aspect_id: str) -> EntityStore:
        self.store = entities.spend_free_invoke(self._require_store(), aspect_id)
        return self.store

    def remove_npc(self, npc_id: str) -> EntityStore:
        self.store = entities.remove_npc(self._require_store(), npc_id)
        return self.store

    def add_npc_consequence(self, npc_id: str, text: str) -> EntityStore:
        self.store = entities.add_npc_consequence(self._require_store(), npc_id, text)
        return self.store

    def remove_npc_consequence(self, npc_id: str, index: int) -> EntityStore:
        self.store = entities.remove_npc_consequence(self._require_store(), npc_id, index)
        return self.store

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> GameSnapshot:
        narrator = None
        if self.session is not None:
            narrator = NarratorState(
                system_prompt=self.session.system_prompt,
                history=list(self.session.history),
            )
        return GameSnapshot(
            setting=self.setting,
            store=self._require_store(),
            fate_points=self.fate_points,
            phase=self.phase,
            interaction=self.interaction.state,
            log=list(self.log),
            turn_id=self._turn_id,
            narrator=narrator,
        )

    def restore(self, snapshot: GameSnapshot) -> None:
        """Load a saved game into this controller, replacing any current one."""
        if self.busy:
            raise BusyError("The narrator is still responding")
        if self.session is not None:
            self.session.close()
        self.store = snapshot.store
        self.setting = snapshot.setting
        self.fate_points = snapshot.fate_points
        self.phase = snapshot.phase
        self.interaction = InteractionMachine(snapshot.interaction)
        self.log = list(snapshot.log)
        self._turn_id = snapshot.turn_id
        self.session = None
        if snapshot.narrator is not None:
            self.session = NarratorSession(
                self._llm,
                snapshot.narrator.system_prompt,
                snapshot.narrator.history,
                history_limit=self._history_limit,
            )
