"""Entity store transforms.

Every function takes an `EntityStore` and returns a new one; inputs are
never mutated, so a caller can keep the previous snapshot around and a
failed operation leaves nothing half-applied.

Entity references:
  "player"   — the player character
  <npc id>   — an NPC in the current roster

Stale identifiers in remove/toggle operations are tolerated as no-ops (the
UI may still hold a reference to something the narrator already replaced).
Out-of-range indices and blank required text raise ValidationError.
"""

from __future__ import annotations

from fate_weaver.errors import OutOfRange, ValidationError
from fate_weaver.models import (
    NPC,
    AspectKind,
    Character,
    ConsequenceSlot,
    Consequences,
    EntityStore,
    Item,
    ItemType,
    SceneAspect,
    SkillName,
    StressTrack,
    normalize_skill,
)

PLAYER = "player"

# rank -> number of slots in the skill pyramid
PYRAMID: dict[int, int] = {4: 1, 3: 2, 2: 3, 1: 4}


# ---------------------------------------------------------------------------
# Character creation
# ---------------------------------------------------------------------------

def stress_boxes(rank: int) -> int:
    """Stress track length for a Physique/Will rank."""
    if rank <= 0:
        return 3
    if rank <= 2:
        return 4
    return 6


def compile_skills(slots: dict[int, list[str]]) -> dict[str, int]:
    """Turn pyramid rank slots into a skill -> rank mapping.

    Blank slots are skipped. Raises ValidationError if a rank is outside the
    pyramid, a rank has too many skills, or a skill is used twice.
    """
    skills: dict[str, int] = {}
    for rank, names in slots.items():
        rank = int(rank)
        if rank not in PYRAMID:
            raise ValidationError(f"Rank +{rank} is not part of the skill pyramid")
        chosen = [n for n in names if n and n.strip()]
        if len(chosen) > PYRAMID[rank]:
            raise ValidationError(
                f"Rank +{rank} holds at most {PYRAMID[rank]} skill(s), got {len(chosen)}"
            )
        for name in chosen:
            skill = normalize_skill(name)
            if skill in skills:
                raise ValidationError(f"Skill {skill} is already ranked")
            skills[skill] = rank
    return skills


def new_character(
    name: str = "",
    *,
    pronouns: str = "",
    high_concept: str = "",
    trouble: str = "",
    relationship: str = "",
    aspect1: str = "",
    aspect2: str = "",
    backstory: str = "",
    skill_slots: dict[int, list[str]] | None = None,
    stunts: list[str] | None = None,
    refresh: int = 3,
) -> Character:
    """Build a finished character sheet from creation choices."""
    skills = compile_skills(skill_slots or {})
    physique = skills.get(SkillName.PHYSIQUE.value, 0)
    will = skills.get(SkillName.WILL.value, 0)
    return Character(
        name=name.strip() or "Unnamed Hero",
        pronouns=pronouns.strip() or "they/them",
        high_concept=high_concept.strip() or "Unknown",
        trouble=trouble.strip() or "Unknown",
        relationship=relationship.strip() or "None",
        aspect1=aspect1.strip(),
        aspect2=aspect2.strip(),
        backstory=backstory,
        skills=skills,
        stunts=[s for s in (stunts or []) if s.strip()],
        refresh=refresh,
        physical_stress=[False] * stress_boxes(physique),
        mental_stress=[False] * stress_boxes(will),
        consequences=Consequences(),
        inventory=[],
    )


# ---------------------------------------------------------------------------
# Stress and consequences
# ---------------------------------------------------------------------------

def _track_field(track: StressTrack) -> str:
    if track == "physical":
        return "physical_stress"
    if track == "mental":
        return "mental_stress"
    raise ValidationError(f"Unknown stress track: {track}")


def _flip(boxes: list[bool], index: int) -> list[bool]:
    if index < 0 or index >= len(boxes):
        raise OutOfRange(f"Stress box {index} out of range (track has {len(boxes)})")
    flipped = list(boxes)
    flipped[index] = not flipped[index]
    return flipped


def _find_npc(store: EntityStore, npc_id: str) -> int:
    for i, npc in enumerate(store.npcs):
        if npc.id == npc_id:
            return i
    raise ValidationError(f"Unknown entity: {npc_id}")


def toggle_stress(store: EntityStore, ref: str, track: StressTrack, index: int) -> EntityStore:
    """Flip exactly one stress box on the player or an NPC."""
    field = _track_field(track)
    if ref == PLAYER:
        boxes = _flip(getattr(store.character, field), index)
        character = store.character.model_copy(update={field: boxes})
        return store.model_copy(update={"character": character})

    i = _find_npc(store, ref)
    npc = store.npcs[i]
    boxes = _flip(getattr(npc, field), index)
    npcs = list(store.npcs)
    npcs[i] = npc.model_copy(update={field: boxes})
    return store.model_copy(update={"npcs": npcs})


def set_consequence(store: EntityStore, slot: ConsequenceSlot, text: str) -> EntityStore:
    """Overwrite a character consequence slot; empty text clears it."""
    if slot not in ("mild", "moderate", "severe"):
        raise ValidationError(f"Unknown consequence slot: {slot}")
    consequences = store.character.consequences.model_copy(update={slot: text.strip()})
    character = store.character.model_copy(update={"consequences": consequences})
    return store.model_copy(update={"character": character})


def add_npc_consequence(store: EntityStore, npc_id: str, text: str) -> EntityStore:
    if not text.strip():
        raise ValidationError("Consequence text is required")
    i = _find_npc(store, npc_id)
    npcs = list(store.npcs)
    npcs[i] = npcs[i].model_copy(
        update={"consequences": [*npcs[i].consequences, text.strip()]}
    )
    return store.model_copy(update={"npcs": npcs})


def remove_npc_consequence(store: EntityStore, npc_id: str, index: int) -> EntityStore:
    i = _find_npc(store, npc_id)
    consequences = list(store.npcs[i].consequences)
    if index < 0 or index >= len(consequences):
        raise OutOfRange(f"Consequence {index} out of range")
    consequences.pop(index)
    npcs = list(store.npcs)
    npcs[i] = npcs[i].model_copy(update={"consequences": consequences})
    return store.model_copy(update={"npcs": npcs})


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

def _with_inventory(store: EntityStore, inventory: list[Item]) -> EntityStore:
    character = store.character.model_copy(update={"inventory": inventory})
    return store.model_copy(update={"character": character})


def add_item(
    store: EntityStore,
    name: str,
    type: ItemType = "gear",
    bonus: int = 0,
    description: str = "",
) -> EntityStore:
    if not name.strip():
        raise ValidationError("Item name is required")
    item = Item(name=name.strip(), type=type, bonus=bonus, description=description)
    return _with_inventory(store, [*store.character.inventory, item])


def remove_item(store: EntityStore, item_id: str) -> EntityStore:
    inventory = [i for i in store.character.inventory if i.id != item_id]
    if len(inventory) == len(store.character.inventory):
        return store
    return _with_inventory(store, inventory)


def toggle_equip(store: EntityStore, item_id: str) -> EntityStore:
    if not any(i.id == item_id for i in store.character.inventory):
        return store
    inventory = [
        i.model_copy(update={"equipped": not i.equipped}) if i.id == item_id else i
        for i in store.character.inventory
    ]
    return _with_inventory(store, inventory)


def clear_inventory(store: EntityStore) -> EntityStore:
    return _with_inventory(store, [])


# ---------------------------------------------------------------------------
# Scene composition
# ---------------------------------------------------------------------------

def upsert_npc_roster(store: EntityStore, npcs: list[NPC]) -> EntityStore:
    """Replace the whole NPC roster; the narrator is authoritative."""
    return store.model_copy(update={"npcs": list(npcs)})


def replace_scene_aspects(store: EntityStore, aspects: list[SceneAspect]) -> EntityStore:
    """Replace the whole scene aspect list; the narrator is authoritative."""
    return store.model_copy(update={"aspects": list(aspects)})


def remove_npc(store: EntityStore, npc_id: str) -> EntityStore:
    npcs = [n for n in store.npcs if n.id != npc_id]
    if len(npcs) == len(store.npcs):
        return store
    return store.model_copy(update={"npcs": npcs})


def add_scene_aspect(
    store: EntityStore,
    name: str,
    kind: AspectKind = "Situation",
    free_invokes: int | None = None,
    description: str | None = None,
) -> EntityStore:
    if not name.strip():
        raise ValidationError("Aspect name is required")
    if free_invokes is None:
        free_invokes = 1 if kind == "Boost" else 0
    aspect = SceneAspect(
        name=name.strip(), type=kind, free_invokes=free_invokes, description=description,
    )
    return store.model_copy(update={"aspects": [*store.aspects, aspect]})


def remove_scene_aspect(store: EntityStore, aspect_id: str) -> EntityStore:
    aspects = [a for a in store.aspects if a.id != aspect_id]
    if len(aspects) == len(store.aspects):
        return store
    return store.model_copy(update={"aspects": aspects})


def spend_free_invoke(store: EntityStore, aspect_id: str) -> EntityStore:
    """Use one free invoke. A spent Boost stays until removed explicitly."""
    for i, aspect in enumerate(store.aspects):
        if aspect.id == aspect_id:
            break
    else:
        raise ValidationError(f"Unknown aspect: {aspect_id}")
    if aspect.free_invokes <= 0:
        raise ValidationError(f"{aspect.name} has no free invokes left")
    aspects = list(store.aspects)
    aspects[i] = aspect.model_copy(update={"free_invokes": aspect.free_invokes - 1})
    return store.model_copy(update={"aspects": aspects})


def clear_scene_state(store: EntityStore) -> EntityStore:
    """End-of-scene reset: all stress boxes cleared, scene aspects dropped.

    Consequences and inventory survive. The new store is assembled in one
    step, so the player and NPCs are always cleared together.
    """
    character = store.character.model_copy(update={
        "physical_stress": [False] * len(store.character.physical_stress),
        "mental_stress": [False] * len(store.character.mental_stress),
    })
    npcs = [
        npc.model_copy(update={
            "physical_stress": [False] * len(npc.physical_stress),
            "mental_stress": [False] * len(npc.mental_stress),
        })
        for npc in store.npcs
    ]
    return EntityStore(character=character, npcs=npcs, aspects=[])
