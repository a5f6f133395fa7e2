"""Game controller flow tests with a scripted narrator.

Each test drives the controller through player events and checks the log,
entity store, phase and interaction state that result. Dice are loaded where
the outcome matters.
"""

import asyncio
import random
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import LoadedDice, StubLLM, narrator_reply
from fate_weaver.controller import CONCEDE_MESSAGE, SCENE_END_MESSAGE, GameController, GameSnapshot
from fate_weaver.directive import OPEN_TAG
from fate_weaver.entities import PLAYER
from fate_weaver.errors import BusyError, OutOfRange, ValidationError
from fate_weaver.interaction import AwaitingRoll, Idle
from fate_weaver.llm import HttpLLM, LLMError

GOBLIN_ATTACK = narrator_reply(
    "A goblin leaps from the rigging!",
    phase="Conflict",
    interaction={
        "type": "Defense",
        "actionType": "Defend",
        "allowedSkills": ["Athletics", "Fight"],
        "difficulty": 3,
        "reason": "The goblin slashes at you",
    },
    sceneData={
        "npcs": [{"id": "gob", "name": "Goblin", "physicalStress": 2}],
        "aspects": [{"id": "rain", "name": "Slick Decks", "type": "Situation", "freeInvokes": 1}],
    },
)

SEARCH = narrator_reply(
    "The crates smell of brine.",
    phase="Challenge",
    interaction={"actionType": "Overcome", "allowedSkills": ["Notice"], "difficulty": 2},
)


# ── Helpers ──────────────────────────────────────────────


@pytest.fixture
async def game(llm, character):
    """A started game: intro logged, no pending roll."""
    controller = GameController(llm, rng=random.Random(0))
    llm.queue("Rain hammers the docks.")
    await controller.start_new_game(character, "Rainy docks")
    return controller


def _entries(controller):
    return [(m.sender, m.kind, m.text) for m in controller.log]


class GateLLM(StubLLM):
    """Holds every call until `release` is set."""

    def __init__(self, replies=None):
        super().__init__(replies)
        self.release = asyncio.Event()

    async def __call__(self, stage, messages):
        await self.release.wait()
        return await super().__call__(stage, messages)


# ── Starting a game ──────────────────────────────────────


async def test_start_new_game(game, character):
    assert _entries(game) == [("gm", "narrative", "Rain hammers the docks.")]
    assert game.log[0].seq == 1
    assert game.fate_points == character.refresh == 3
    assert game.phase == "Narrative"
    assert isinstance(game.interaction.state, Idle)
    assert game.store.npcs == []
    assert game.store.aspects == []
    assert game.setting == "Rainy docks"


async def test_start_new_game_fate_point_override(llm, character):
    controller = GameController(llm)
    await controller.start_new_game(character, "Docks", fate_points=5)
    assert controller.fate_points == 5


async def test_intro_directive_is_applied(llm, character):
    llm.queue(GOBLIN_ATTACK)
    controller = GameController(llm)
    await controller.start_new_game(character, "Docks")
    assert controller.phase == "Conflict"
    assert controller.interaction.awaiting_roll
    assert [n.name for n in controller.store.npcs] == ["Goblin"]


async def test_restart_closes_previous_session(game, character, llm):
    old_session = game.session
    await game.submit_message("I wait.")
    llm.queue("A new dawn.")
    await game.start_new_game(character, "Mountain pass")

    assert old_session.closed
    assert game.session is not old_session
    assert _entries(game) == [("gm", "narrative", "A new dawn.")]
    assert game.log[0].seq == 1
    assert len(game.session.history) == 2


async def test_actions_before_start_rejected(llm):
    controller = GameController(llm)
    with pytest.raises(ValidationError):
        await controller.submit_message("Hello")
    with pytest.raises(ValidationError):
        controller.toggle_stress(PLAYER, "physical", 0)


# ── Messages ─────────────────────────────────────────────


async def test_message_logs_player_then_gm(game, llm):
    llm.queue("The harbourmaster eyes you.")
    await game.submit_message("  I approach the harbourmaster.  ")

    assert _entries(game)[1:] == [
        ("player", "narrative", "I approach the harbourmaster."),
        ("gm", "narrative", "The harbourmaster eyes you."),
    ]
    assert [m.seq for m in game.log] == [1, 2, 3]
    assert game.log[1].turn_id == game.log[2].turn_id != game.log[0].turn_id


async def test_message_sends_scene_to_narrator(game, llm):
    llm.queue(GOBLIN_ATTACK, "The goblin hesitates.")
    await game.submit_message("I look up.")
    await game.submit_message("I shout at it.")
    assert '"name": "Goblin"' in llm.last_user_message
    assert "[SCENE DATA]" in llm.last_user_message


async def test_blank_message_rejected(game):
    before = list(game.log)
    with pytest.raises(ValidationError):
        await game.submit_message("   ")
    assert game.log == before


async def test_directive_sets_phase_roll_and_scene(game, llm):
    llm.queue(GOBLIN_ATTACK)
    await game.submit_message("I look up.")

    assert game.phase == "Conflict"
    assert game.can_concede
    pending = game.interaction.pending
    assert pending.type == "Defense"
    assert pending.action_type == "Defend"
    assert pending.allowed_skills == ["Athletics", "Fight"]
    assert pending.difficulty == 3
    assert [(n.id, n.physical_stress) for n in game.store.npcs] == [("gob", [False, False])]
    assert [(a.id, a.free_invokes) for a in game.store.aspects] == [("rain", 1)]
    assert OPEN_TAG not in game.log[-1].text


async def test_scene_keys_absent_leave_roster(game, llm):
    llm.queue(GOBLIN_ATTACK, narrator_reply("Thunder.", sceneData={"aspects": []}))
    await game.submit_message("I look up.")
    await game.submit_message("I listen.")
    assert [n.id for n in game.store.npcs] == ["gob"]
    assert game.store.aspects == []
    assert game.phase == "Narrative"


async def test_message_drops_pending_roll(game, llm):
    llm.queue(GOBLIN_ATTACK, "You dive behind a barrel.")
    await game.submit_message("I look up.")
    await game.submit_message("Forget the roll, I hide.")
    assert isinstance(game.interaction.state, Idle)


async def test_missing_directive_keeps_phase(game, llm):
    llm.queue(GOBLIN_ATTACK, "The goblin circles you.")
    await game.submit_message("I look up.")
    await game.submit_message("I wait.")
    assert game.phase == "Conflict"
    assert isinstance(game.interaction.state, Idle)


async def test_malformed_directive_shows_narrative(game, llm):
    llm.queue(f"The fog thickens.\n{OPEN_TAG}{{broken</game_state>")
    response = await game.submit_message("I wait.")
    assert response.directive is None
    assert response.directive_error
    assert game.log[-1].text == "The fog thickens."
    assert game.phase == "Narrative"


# ── Rolls ────────────────────────────────────────────────


async def test_roll_while_idle_rejected(game):
    before = list(game.log)
    with pytest.raises(ValidationError):
        await game.submit_roll("Fight")
    assert game.log == before


async def test_roll_resolves_and_logs_in_order(game, llm):
    llm.queue(SEARCH, "You find a hidden ledger.")
    await game.submit_message("I search the crates.")
    game.rng = LoadedDice([1, 1, 0, 0])

    await game.submit_roll("notice", "I check under the tarp.")

    assert _entries(game)[-3:] == [
        ("player", "narrative", "I check under the tarp."),
        ("system", "meta", "[Overcome] Rolled Notice (+2). Result: Great (4) vs Fair (+2)"),
        ("gm", "narrative", "You find a hidden ledger."),
    ]
    roll = game.log[-2].roll
    assert roll.faces == [1, 1, 0, 0]
    assert (roll.result, roll.bonus, roll.total) == (2, 2, 4)
    assert isinstance(game.interaction.state, Idle)
    assert len({m.turn_id for m in game.log[-3:]}) == 1


async def test_roll_sends_outcome_and_status(game, llm):
    llm.queue(SEARCH, "Found it.")
    await game.submit_message("I search.")
    game.rng = LoadedDice([0, 0, 0, 0])
    await game.submit_roll("Notice")

    sent = llm.last_user_message
    assert sent.startswith("I roll Notice.")
    assert "[SYSTEM INFO]: ACTION: Overcome" in sent
    assert "ROLL TOTAL: 2 (Fair)" in sent
    assert "SHIFTS: +0 (Tie)" in sent
    assert "PLAYER STATUS" in sent
    assert ("player", "narrative", "I roll Notice.") not in _entries(game)


async def test_roll_with_unlisted_skill_allowed(game, llm):
    llm.queue(SEARCH, "Brute force works too.")
    await game.submit_message("I search.")
    game.rng = LoadedDice([0, 0, 0, 0])
    await game.submit_roll("Physique")
    assert game.log[-2].roll.skill == "Physique"
    assert game.log[-2].roll.total == 3


async def test_roll_with_unknown_skill_keeps_pending(game, llm):
    llm.queue(SEARCH)
    await game.submit_message("I search.")
    with pytest.raises(ValidationError):
        await game.submit_roll("Hacking")
    with pytest.raises(ValidationError):
        await game.submit_roll("  ")
    assert game.interaction.awaiting_roll


# ── Full defense ─────────────────────────────────────────


async def test_full_defense_applies_to_next_defend_only(game, llm):
    llm.queue(GOBLIN_ATTACK, "You parry.")
    await game.submit_message("I look up.")
    game.declare_full_defense()
    assert game.character.full_defense
    assert game.log[-1].kind == "meta"

    game.rng = LoadedDice([0, 0, 0, 0])
    await game.submit_roll("Athletics")

    assert game.log[-2].roll.total == 5  # Athletics +3, full defense +2
    assert game.log[-2].text.endswith("[full defense]")
    assert not game.character.full_defense


async def test_full_defense_survives_other_rolls(game, llm):
    llm.queue(SEARCH, "Nothing.")
    await game.submit_message("I search.")
    game.declare_full_defense()
    game.rng = LoadedDice([0, 0, 0, 0])
    await game.submit_roll("Notice")
    assert game.log[-2].roll.total == 2
    assert game.character.full_defense


# ── Narrator failures ────────────────────────────────────


async def test_gateway_error_on_message(game, llm):
    store_before = game.store
    llm.queue(LLMError("Cannot connect to LLM backend"))
    response = await game.submit_message("I run.")

    assert response is None
    assert _entries(game)[1:] == [
        ("system", "error", "The narrator is silent: Cannot connect to LLM backend"),
    ]
    assert game.store == store_before
    assert not game.busy
    assert len(game.session.history) == 2  # intro only


async def test_gateway_error_on_roll_returns_to_idle(game, llm):
    llm.queue(GOBLIN_ATTACK, LLMError("timed out"))
    await game.submit_message("I look up.")
    game.declare_full_defense()
    log_len = len(game.log)

    await game.submit_roll("Athletics", "I dodge!")

    assert len(game.log) == log_len + 1
    assert game.log[-1].kind == "error"
    assert isinstance(game.interaction.state, Idle)
    assert game.character.full_defense
    assert game.phase == "Conflict"


async def test_game_continues_after_gateway_error(game, llm):
    llm.queue(LLMError("down"), "Back again.")
    await game.submit_message("Hello?")
    await game.submit_message("Hello again?")
    assert _entries(game)[-2:] == [
        ("player", "narrative", "Hello again?"),
        ("gm", "narrative", "Back again."),
    ]


async def test_transport_failure_from_http_backend_is_logged(character):
    controller = GameController(HttpLLM("http://localhost:11434", provider_format="ollama"))
    failing_post = AsyncMock(side_effect=httpx.ReadError("connection reset"))
    with patch("httpx.AsyncClient.post", failing_post):
        await controller.start_new_game(character, "Rainy docks")

    assert [m.kind for m in controller.log] == ["error"]
    assert controller.log[0].text.startswith("The narrator is silent:")
    assert not controller.busy


async def test_backend_url_without_scheme_is_logged(character):
    controller = GameController(HttpLLM("localhost:11434", provider_format="ollama"))
    await controller.start_new_game(character, "Rainy docks")

    assert [m.kind for m in controller.log] == ["error"]
    assert not controller.busy


# ── Busy ─────────────────────────────────────────────────


async def test_submissions_rejected_while_busy(character):
    llm = GateLLM()
    llm.release.set()
    controller = GameController(llm)
    await controller.start_new_game(character, "Docks")
    llm.release.clear()

    task = asyncio.create_task(controller.submit_message("I knock."))
    await asyncio.sleep(0)
    assert controller.busy
    with pytest.raises(BusyError):
        await controller.submit_message("I knock again.")
    with pytest.raises(BusyError):
        await controller.end_scene()

    llm.release.set()
    await task
    assert not controller.busy
    assert [m.text for m in controller.log if m.sender == "player"] == ["I knock."]


# ── Scene end and concession ─────────────────────────────


async def _hurt_conflict(game, llm):
    llm.queue(GOBLIN_ATTACK)
    await game.submit_message("I look up.")
    game.toggle_stress(PLAYER, "physical", 0)
    game.toggle_stress("gob", "mental", 1)
    game.set_consequence("mild", "Cut Cheek")


async def test_end_scene(game, llm):
    await _hurt_conflict(game, llm)
    llm.queue("Dawn breaks over a quiet harbour.")
    await game.end_scene()

    assert not any(game.character.physical_stress)
    assert not any(game.store.npcs[0].mental_stress)
    assert game.store.aspects == []
    assert game.character.consequences.mild == "Cut Cheek"
    assert _entries(game)[-3:] == [
        ("system", "meta", "The scene ends. Stress and scene aspects are cleared."),
        ("player", "narrative", SCENE_END_MESSAGE),
        ("gm", "narrative", "Dawn breaks over a quiet harbour."),
    ]


async def test_end_scene_gateway_error_keeps_clear(game, llm):
    await _hurt_conflict(game, llm)
    llm.queue(LLMError("down"))
    await game.end_scene()

    assert not any(game.character.physical_stress)
    assert game.store.aspects == []
    assert [kind for _, kind, _ in _entries(game)[-2:]] == ["meta", "error"]
    assert all(m.sender != "gm" for m in game.log[-2:])


async def test_concede(game, llm):
    llm.queue(GOBLIN_ATTACK, "You yield; the goblin takes your purse.")
    await game.submit_message("I look up.")
    assert game.can_concede

    await game.concede()

    assert game.fate_points == 4
    assert _entries(game)[-2:] == [
        ("player", "narrative", CONCEDE_MESSAGE),
        ("gm", "narrative", "You yield; the goblin takes your purse."),
    ]
    assert isinstance(game.interaction.state, Idle)


async def test_concede_outside_conflict_not_blocked(game):
    assert not game.can_concede
    await game.concede()
    assert game.fate_points == 4


async def test_concede_fate_point_kept_on_gateway_error(game, llm):
    llm.queue(LLMError("down"))
    await game.concede()
    assert game.fate_points == 4
    assert game.log[-1].kind == "error"


async def test_adjust_fate_points_clamps_at_zero(game):
    assert game.adjust_fate_points(-2) == 1
    assert game.adjust_fate_points(-5) == 0
    assert game.adjust_fate_points(10) == 10


# ── Sheet edits ──────────────────────────────────────────


async def test_sheet_edits_replace_store(game):
    game.add_item("Boat Hook", "weapon", 1)
    item_id = game.character.inventory[0].id
    game.toggle_equip(item_id)
    assert game.character.inventory[0].equipped
    game.remove_item("stale-id")
    game.remove_item(item_id)
    assert game.character.inventory == []

    game.add_scene_aspect("Off Balance", "Boost")
    aspect_id = game.store.aspects[0].id
    game.spend_free_invoke(aspect_id)
    assert game.store.aspects[0].free_invokes == 0
    game.remove_scene_aspect(aspect_id)
    assert game.store.aspects == []


async def test_invalid_edit_leaves_store(game):
    before = game.store
    with pytest.raises(OutOfRange):
        game.toggle_stress(PLAYER, "mental", 10)
    assert game.store is before


# ── Persistence ──────────────────────────────────────────


async def test_snapshot_and_restore(game, llm):
    llm.queue(GOBLIN_ATTACK)
    await game.submit_message("I look up.")
    game.adjust_fate_points(1)

    snapshot = GameSnapshot.model_validate_json(game.snapshot().model_dump_json())
    restored = GameController(llm)
    restored.restore(snapshot)

    assert restored.store == game.store
    assert restored.fate_points == 4
    assert restored.phase == "Conflict"
    assert isinstance(restored.interaction.state, AwaitingRoll)
    assert restored.interaction.pending == game.interaction.pending
    assert restored.log == game.log

    llm.queue("The goblin flees.")
    await restored.submit_message("I roar.")
    assert restored.log[-1].seq == game.log[-1].seq + 2
    _, messages = llm.calls[-1]
    assert messages[0]["content"] == game.session.system_prompt
    assert len(messages) == 6  # system + intro exchange + attack exchange + new turn
