"""Shared helpers for route handlers: storage, live controllers, views."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from fate_weaver.config import get_config, narrator_llm
from fate_weaver.controller import GameController
from fate_weaver.llm import LLM
from fate_weaver.storage import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def app_config(request: Request) -> dict[str, Any]:
    return get_config(get_storage(request).base_path)


def make_llm(request: Request) -> LLM:
    """The injected narrator LLM, or an HTTP client built from settings."""
    llm = request.app.state.llm
    if llm is not None:
        return llm
    return narrator_llm(app_config(request))


def new_controller(request: Request) -> GameController:
    config = app_config(request)
    return GameController(make_llm(request), history_limit=int(config["history_limit"]))


def load_controller(request: Request, slug: str) -> GameController:
    """Live controller for a game, restored from disk on first access."""
    games: dict[str, GameController] = request.app.state.games
    if slug in games:
        return games[slug]
    storage = get_storage(request)
    if storage.get_game(slug) is None:
        raise HTTPException(404, "Game not found")
    snapshot = storage.load_state(slug)
    if snapshot is None:
        raise HTTPException(404, "Game has no saved state")
    controller = new_controller(request)
    controller.restore(snapshot)
    games[slug] = controller
    return controller


def save_and_view(request: Request, slug: str, controller: GameController) -> dict[str, Any]:
    """Persist the controller and return the client view of the game."""
    snapshot = controller.snapshot()
    get_storage(request).save_state(slug, snapshot)
    view = snapshot.model_dump(mode="json", exclude={"narrator"})
    view.update(slug=slug, busy=controller.busy, can_concede=controller.can_concede)
    return view
