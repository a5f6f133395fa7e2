import json

import pytest

from fate_weaver.directive import CLOSE_TAG, OPEN_TAG
from fate_weaver.entities import new_character
from fate_weaver.models import Character


class StubLLM:
    """Scripted narrator. Replies are returned in order; a queued exception is raised.

    Every call is recorded as (stage, messages). When the script runs out the
    narrator answers with plain prose and no directive.
    """

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls: list[tuple[str, list[dict]]] = []

    def queue(self, *replies) -> None:
        self.replies.extend(replies)

    async def __call__(self, stage, messages):
        self.calls.append((stage, [dict(m) for m in messages]))
        if not self.replies:
            return "The story continues."
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def last_user_message(self) -> str:
        return self.calls[-1][1][-1]["content"]


class LoadedDice:
    """Stands in for random.Random in dice rolls: returns the given faces in order."""

    def __init__(self, faces):
        self.faces = list(faces)

    def choice(self, seq):
        return self.faces.pop(0)


def narrator_reply(text: str, **directive) -> str:
    """Narrator prose followed by a <game_state> block built from keyword fields."""
    return f"{text}\n{OPEN_TAG}{json.dumps(directive)}{CLOSE_TAG}"


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def character() -> Character:
    return new_character(
        "Mara",
        pronouns="she/her",
        high_concept="Disgraced Knight of the Ember Order",
        trouble="Owes the Guild Everything",
        relationship="Sworn to Protect Tomas",
        skill_slots={
            4: ["Fight"],
            3: ["Athletics", "Physique"],
            2: ["Notice", "Will", "Stealth"],
            1: ["Lore", "Rapport", "Empathy", "Provoke"],
        },
        stunts=["Riposte: +2 to Fight when defending against a melee attack"],
    )
