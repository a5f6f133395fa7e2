"""Character sheet and scene editing endpoints.

Removing something that is already gone is a no-op and still returns 200.
"""

from fastapi import APIRouter, Request

from .deps import load_controller, save_and_view
from .models import AspectBody, ConsequenceBody, ItemBody, NpcConsequenceBody, StressBody

router = APIRouter()


# ── Stress and consequences ──────────────────────────────


@router.post("/games/{slug}/stress")
async def toggle_stress(request: Request, slug: str, body: StressBody):
    """Toggle one stress box of the player ("player") or an NPC (by id)."""
    controller = load_controller(request, slug)
    controller.toggle_stress(body.ref, body.track, body.index)
    return save_and_view(request, slug, controller)


@router.put("/games/{slug}/consequences")
async def set_consequence(request: Request, slug: str, body: ConsequenceBody):
    """Write or clear (empty text) a consequence slot."""
    controller = load_controller(request, slug)
    controller.set_consequence(body.slot, body.text)
    return save_and_view(request, slug, controller)


# ── Inventory ────────────────────────────────────────────


@router.post("/games/{slug}/inventory")
async def add_item(request: Request, slug: str, body: ItemBody):
    controller = load_controller(request, slug)
    controller.add_item(body.name, body.type, body.bonus, body.description)
    return save_and_view(request, slug, controller)


@router.delete("/games/{slug}/inventory")
async def clear_inventory(request: Request, slug: str):
    controller = load_controller(request, slug)
    controller.clear_inventory()
    return save_and_view(request, slug, controller)


@router.delete("/games/{slug}/inventory/{item_id}")
async def remove_item(request: Request, slug: str, item_id: str):
    controller = load_controller(request, slug)
    controller.remove_item(item_id)
    return save_and_view(request, slug, controller)


@router.post("/games/{slug}/inventory/{item_id}/equip")
async def toggle_equip(request: Request, slug: str, item_id: str):
    controller = load_controller(request, slug)
    controller.toggle_equip(item_id)
    return save_and_view(request, slug, controller)


# ── Scene aspects and NPCs ───────────────────────────────


@router.post("/games/{slug}/aspects")
async def add_aspect(request: Request, slug: str, body: AspectBody):
    """Add a situation aspect or boost (boosts default to one free invoke)."""
    controller = load_controller(request, slug)
    controller.add_scene_aspect(body.name, body.type, body.free_invokes, body.description)
    return save_and_view(request, slug, controller)


@router.delete("/games/{slug}/aspects/{aspect_id}")
async def remove_aspect(request: Request, slug: str, aspect_id: str):
    controller = load_controller(request, slug)
    controller.remove_scene_aspect(aspect_id)
    return save_and_view(request, slug, controller)


@router.post("/games/{slug}/aspects/{aspect_id}/invoke")
async def invoke_aspect(request: Request, slug: str, aspect_id: str):
    """Spend one free invoke on a scene aspect."""
    controller = load_controller(request, slug)
    controller.spend_free_invoke(aspect_id)
    return save_and_view(request, slug, controller)


@router.delete("/games/{slug}/npcs/{npc_id}")
async def remove_npc(request: Request, slug: str, npc_id: str):
    controller = load_controller(request, slug)
    controller.remove_npc(npc_id)
    return save_and_view(request, slug, controller)


@router.post("/games/{slug}/npcs/{npc_id}/consequences")
async def add_npc_consequence(request: Request, slug: str, npc_id: str, body: NpcConsequenceBody):
    controller = load_controller(request, slug)
    controller.add_npc_consequence(npc_id, body.text)
    return save_and_view(request, slug, controller)


@router.delete("/games/{slug}/npcs/{npc_id}/consequences/{index}")
async def remove_npc_consequence(request: Request, slug: str, npc_id: str, index: int):
    controller = load_controller(request, slug)
    controller.remove_npc_consequence(npc_id, index)
    return save_and_view(request, slug, controller)
