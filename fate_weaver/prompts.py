"""Handlebars prompt rendering for the narrator.

Templates use triple-stash ({{{ }}}) for free text so quotes and ampersands
reach the model unescaped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from fate_weaver.directive import CLOSE_TAG, OPEN_TAG
from fate_weaver.models import SKILL_LIST, Character, NPC, SceneAspect

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_boxes(this, track):
    """{{boxes physical_stress}} — "[XOO]" with X for a marked box."""
    return "[" + "".join("X" if marked else "O" for marked in track) + "]"


_HELPERS: dict[str, Callable] = {
    "boxes": _helper_boxes,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

DIRECTIVE_EXAMPLE = (
    '{"phase": "Narrative|Challenge|Contest|Conflict", '
    '"interaction": null | {"type": "Action|Defense", '
    '"actionType": "Overcome|Create Advantage|Attack|Defend", '
    '"allowedSkills": ["Skill"], "difficulty": 0, "reason": "what the roll is for"}, '
    '"sceneData": {"npcs": [{"id": "id", "name": "Name", "description": "concept", '
    '"aspects": ["Aspect"], "skills": {"Fight": 2}, "physicalStress": 3, '
    '"mentalStress": 3, "consequences": []}], '
    '"aspects": [{"id": "id", "name": "Aspect", "type": "Situation|Boost", "freeInvokes": 0}]}}'
)

NARRATOR_TEMPLATE = """\
You are the Game Master (GM) for a tabletop roleplaying game using the "Fate Condensed" rules system.
Your goal is to run an engaging, dramatic narrative for the player.

RULES SUMMARY:
1. Fiction First: always describe what happens in the story.
2. Dice: players roll 4 Fate Dice (-1, 0, +1).
3. Ladder: +8 Legendary, +4 Great, +2 Fair, +0 Mediocre, -2 Terrible.
4. Actions: Overcome, Create Advantage, Attack, Defend.
5. Outcomes: Fail, Tie, Success, Success with Style (3+ shifts over target).

GUIDELINES:
- Do not roll dice for the player. Ask for a roll when the outcome is uncertain.
- Interpret the player's rolls by the Fate Condensed rules.
- Suggest compels on the player's aspects{{#if char.all_aspects}} ({{{char.all_aspects}}}){{/if}} in exchange for a Fate Point.
- Respect the player's agency. Keep responses under 200 words unless a new scene needs describing.

GAME STATE:
End every reply with exactly one block:
{{{open_tag}}}{{{directive_example}}}{{{close_tag}}}
Set "interaction" when you need a roll from the player, otherwise null.
Use "Defense" when the player reacts to an attack or obstacle.
Skills: {{{skill_list}}}.
Include "sceneData" only when the NPCs or scene aspects change; each list replaces the current one entirely.

SETTING: {{{setting}}}

PLAYER CHARACTER:
Name: {{{char.name}}} ({{{char.pronouns}}})
High Concept: {{{char.high_concept}}}
Trouble: {{{char.trouble}}}
{{#if char.relationship}}Relationship: {{{char.relationship}}}
{{/if}}{{#if char.aspects}}Other Aspects: {{{char.aspects}}}
{{/if}}{{#if char.backstory}}Backstory: {{{char.backstory}}}
{{/if}}Top Skills: {{#if char.top_skills}}{{{char.top_skills}}}{{else}}none above Fair{{/if}}
{{#if char.stunts}}Stunts: {{{char.stunts}}}
{{/if}}Inventory: {{#if char.inventory}}{{{char.inventory}}}{{else}}nothing{{/if}}
"""

OPENING_TEMPLATE = (
    "The setting is: {{{setting}}}. Start the game by introducing the scene "
    "and an immediate hook or problem for {{{name}}}."
)

STATUS_TEMPLATE = """\
PLAYER STATUS:
Physical Stress: {{boxes physical_stress}}
Mental Stress: {{boxes mental_stress}}
Consequences: {{#if consequences}}{{{consequences}}}{{else}}None{{/if}}
{{#if npcs}}NPCS PRESENT:
{{#each npcs}}- {{{name}}}: physical {{boxes physical_stress}}, mental {{boxes mental_stress}}{{#if consequences}}, consequences: {{{consequences}}}{{/if}}
{{/each}}{{/if}}{{#if aspects}}SCENE ASPECTS: {{{aspects}}}
{{/if}}"""


# ── Context building ─────────────────────────────────────


def character_context(character: Character) -> dict[str, Any]:
    """Template variables describing the player character."""
    top = sorted(
        ((name, rank) for name, rank in character.skills.items() if rank >= 3),
        key=lambda pair: (-pair[1], pair[0]),
    )
    extra_aspects = [a for a in (character.aspect1, character.aspect2) if a]
    return {
        "name": character.name,
        "pronouns": character.pronouns,
        "high_concept": character.high_concept,
        "trouble": character.trouble,
        "relationship": character.relationship,
        "aspects": ", ".join(extra_aspects),
        "all_aspects": "; ".join(character.aspects()),
        "backstory": character.backstory,
        "top_skills": ", ".join(f"{name} ({rank:+d})" for name, rank in top),
        "stunts": "; ".join(character.stunts),
        "inventory": ", ".join(i.name for i in character.inventory),
    }


def build_context(character: Character, setting: str) -> dict[str, Any]:
    return {
        "setting": setting,
        "char": character_context(character),
        "skill_list": ", ".join(SKILL_LIST),
        "open_tag": OPEN_TAG,
        "directive_example": DIRECTIVE_EXAMPLE,
        "close_tag": CLOSE_TAG,
    }


def narrator_instruction(character: Character, setting: str) -> str:
    return render_prompt(NARRATOR_TEMPLATE, build_context(character, setting))


def opening_prompt(character: Character, setting: str) -> str:
    return render_prompt(OPENING_TEMPLATE, {"setting": setting, "name": character.name})


def status_context(
    character: Character,
    npcs: list[NPC] | None = None,
    aspects: list[SceneAspect] | None = None,
) -> str:
    """Stress, consequences and scene snapshot sent alongside a roll."""
    filled = character.consequences.filled()
    context = {
        "physical_stress": character.physical_stress,
        "mental_stress": character.mental_stress,
        "consequences": ", ".join(f"{slot.title()}: {text}" for slot, text in filled.items()),
        "npcs": [
            {
                "name": n.name,
                "physical_stress": n.physical_stress,
                "mental_stress": n.mental_stress,
                "consequences": ", ".join(n.consequences),
            }
            for n in npcs or []
        ],
        "aspects": ", ".join(
            f"{a.name} ({a.type}, {a.free_invokes} free)" for a in aspects or []
        ),
    }
    return render_prompt(STATUS_TEMPLATE, context).strip()
