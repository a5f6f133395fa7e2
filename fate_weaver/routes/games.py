"""Game lifecycle and turn endpoints.

Turn endpoints return the full game view. A narrator failure is not an HTTP
error: it shows up as an "error" entry at the end of the log.
"""

from fastapi import APIRouter, HTTPException, Request

from fate_weaver.entities import new_character

from .deps import app_config, get_storage, load_controller, new_controller, save_and_view
from .models import CreateGame, FatePointsBody, MessageBody, RollBody

router = APIRouter()


@router.get("/games")
async def list_games(request: Request):
    """List saved games."""
    return get_storage(request).list_games()


@router.post("/games")
async def create_game(request: Request, body: CreateGame):
    """Create a character, start a new game and return it with the narrator's intro."""
    c = body.character
    character = new_character(
        c.name,
        pronouns=c.pronouns,
        high_concept=c.high_concept,
        trouble=c.trouble,
        relationship=c.relationship,
        aspect1=c.aspect1,
        aspect2=c.aspect2,
        backstory=c.backstory,
        skill_slots=c.skills,
        stunts=c.stunts,
        refresh=c.refresh,
    )
    config = app_config(request)
    setting = (body.setting or "").strip() or config["default_setting"]

    meta = get_storage(request).create_game(body.title, setting, character.name)
    controller = new_controller(request)
    request.app.state.games[meta.slug] = controller
    await controller.start_new_game(
        character, setting, fate_points=config["starting_fate_points"],
    )
    return save_and_view(request, meta.slug, controller)


@router.get("/games/{slug}")
async def get_game(request: Request, slug: str):
    """Get the full state of a game."""
    controller = load_controller(request, slug)
    return save_and_view(request, slug, controller)


@router.delete("/games/{slug}")
async def delete_game(request: Request, slug: str):
    """Delete a game and its saved state."""
    controller = request.app.state.games.pop(slug, None)
    if controller is not None:
        controller.end_game()
    if not get_storage(request).delete_game(slug):
        raise HTTPException(404, "Game not found")
    return {"ok": True}


@router.post("/games/{slug}/messages")
async def send_message(request: Request, slug: str, body: MessageBody):
    """Send free-form player intent to the narrator."""
    controller = load_controller(request, slug)
    await controller.submit_message(body.text)
    return save_and_view(request, slug, controller)


@router.post("/games/{slug}/roll")
async def submit_roll(request: Request, slug: str, body: RollBody):
    """Roll for the pending interaction."""
    controller = load_controller(request, slug)
    await controller.submit_roll(body.skill, body.narrative)
    return save_and_view(request, slug, controller)


@router.post("/games/{slug}/end-scene")
async def end_scene(request: Request, slug: str):
    """Clear stress and scene aspects and move to the next scene."""
    controller = load_controller(request, slug)
    await controller.end_scene()
    return save_and_view(request, slug, controller)


@router.post("/games/{slug}/concede")
async def concede(request: Request, slug: str):
    """Concede the conflict for a fate point."""
    controller = load_controller(request, slug)
    await controller.concede()
    return save_and_view(request, slug, controller)


@router.post("/games/{slug}/full-defense")
async def full_defense(request: Request, slug: str):
    """Declare full defense: +2 to the next defend roll."""
    controller = load_controller(request, slug)
    controller.declare_full_defense()
    return save_and_view(request, slug, controller)


@router.patch("/games/{slug}/fate-points")
async def adjust_fate_points(request: Request, slug: str, body: FatePointsBody):
    """Spend or gain fate points. Never drops below zero."""
    controller = load_controller(request, slug)
    controller.adjust_fate_points(body.delta)
    return save_and_view(request, slug, controller)
