"""Interaction state machine — what the game is waiting for.

    Idle                          free-form player intent
    AwaitingRoll(pending)         a specific mechanical roll

Transitions:
    any          --message-->            Idle (a pending roll is dropped)
    any          --directive(null)-->    Idle
    any          --directive(roll)-->    AwaitingRoll
    AwaitingRoll --roll-->               Idle (pending consumed)
    Idle         --roll-->               ValidationError

Roll resolution (`resolve_roll`) is a pure function: the effective rank is
the character's skill rank, +2 on a Defend roll while full defense is
declared. Full defense is consumed by that roll and nothing else.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from fate_weaver.dice import RollResult, describe_rating, ladder_label, outcome_for, signed
from fate_weaver.directive import Directive
from fate_weaver.errors import ValidationError
from fate_weaver.models import Character, PendingInteraction, RollRecord

logger = logging.getLogger(__name__)

FULL_DEFENSE_BONUS = 2


class Idle(BaseModel):
    kind: Literal["idle"] = "idle"


class AwaitingRoll(BaseModel):
    kind: Literal["awaiting_roll"] = "awaiting_roll"
    pending: PendingInteraction


InteractionState = Annotated[Idle | AwaitingRoll, Field(discriminator="kind")]


class InteractionMachine:
    def __init__(self, state: Idle | AwaitingRoll | None = None) -> None:
        self._state: Idle | AwaitingRoll = state or Idle()

    @property
    def state(self) -> Idle | AwaitingRoll:
        return self._state

    @property
    def pending(self) -> PendingInteraction | None:
        if isinstance(self._state, AwaitingRoll):
            return self._state.pending
        return None

    @property
    def awaiting_roll(self) -> bool:
        return isinstance(self._state, AwaitingRoll)

    def on_message(self) -> None:
        """A new player message always returns to Idle."""
        if isinstance(self._state, AwaitingRoll):
            logger.debug("pending %s roll dropped by new message", self._state.pending.action_type)
        self._state = Idle()

    def on_directive(self, directive: Directive | None) -> None:
        if directive is None or directive.interaction is None:
            self._state = Idle()
            return
        self._state = AwaitingRoll(pending=directive.interaction.to_pending())

    def take_pending(self) -> PendingInteraction:
        """Consume the pending interaction for a roll."""
        if not isinstance(self._state, AwaitingRoll):
            raise ValidationError("No roll is pending")
        pending = self._state.pending
        self._state = Idle()
        return pending


# ---------------------------------------------------------------------------
# Roll resolution
# ---------------------------------------------------------------------------

class RollResolution(BaseModel):
    record: RollRecord
    label: str
    full_defense_used: bool = False
    log_text: str
    narrator_context: str


def resolve_roll(
    pending: PendingInteraction,
    character: Character,
    skill: str,
    dice: RollResult,
) -> RollResolution:
    rank = character.skill_rank(skill)
    full_defense_used = character.full_defense and pending.action_type == "Defend"
    if full_defense_used:
        rank += FULL_DEFENSE_BONUS

    total = dice.total + rank
    label = ladder_label(total)
    record = RollRecord(
        skill=skill,
        bonus=rank,
        faces=list(dice.faces),
        result=dice.total,
        total=total,
        action=pending.action_type,
        vs=pending.difficulty,
    )

    log_text = (
        f"[{pending.action_type}] Rolled {skill} ({signed(rank)}). "
        f"Result: {label} ({total}) vs {describe_rating(pending.difficulty)}"
    )
    if full_defense_used:
        log_text += " [full defense]"

    shifts = total - pending.difficulty
    narrator_context = "\n".join([
        f"ACTION: {pending.action_type}",
        f"SKILL: {skill}",
        f"ROLL TOTAL: {total} ({label})",
        f"AGAINST: {pending.description or 'unspecified'} at {describe_rating(pending.difficulty)}",
        f"SHIFTS: {signed(shifts)} ({outcome_for(shifts)})",
    ])
    return RollResolution(
        record=record,
        label=label,
        full_defense_used=full_defense_used,
        log_text=log_text,
        narrator_context=narrator_context,
    )
