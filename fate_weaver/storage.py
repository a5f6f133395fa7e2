"""JSON file storage for games.

There is no database: each game is a metadata file plus a directory holding
the controller snapshot.

Directory layout:

    {base}/
      config.json             ← app settings (see config.py)
      games/
        {slug}.json           ← game metadata (slug, title, setting, character)
        {slug}/
          state.json          ← GameSnapshot: store, fate points, phase,
                                interaction, message log, narrator history

Slug rules: title → Unicode normalize → strip non-ASCII → lowercase →
replace non-alnum runs with hyphen → strip leading/trailing hyphens.
Colliding slugs get a numeric suffix ("the-heist-2").
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import unicodedata
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from fate_weaver.controller import GameSnapshot

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    """Convert a title to a filesystem-safe slug.

    "The Cursed Tavern" → "the-cursed-tavern"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


class GameMeta(BaseModel):
    slug: str
    title: str
    setting: str = ""
    character_name: str = ""


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._games_root = base_path / "games"
        self._games_root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _game_file(self, slug: str) -> Path:
        return self._games_root / f"{slug}.json"

    def _game_dir(self, slug: str) -> Path:
        return self._games_root / slug

    def _state_file(self, slug: str) -> Path:
        return self._game_dir(slug) / "state.json"

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    def _unique_slug(self, title: str) -> str:
        base = slugify(title)
        slug, n = base, 2
        while self._game_file(slug).exists():
            slug = f"{base}-{n}"
            n += 1
        return slug

    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------

    def create_game(self, title: str, setting: str, character_name: str = "") -> GameMeta:
        meta = GameMeta(
            slug=self._unique_slug(title),
            title=title,
            setting=setting,
            character_name=character_name,
        )
        self._game_file(meta.slug).write_text(meta.model_dump_json(indent=2))
        self._game_dir(meta.slug).mkdir(exist_ok=True)
        logger.info("created game %s", meta.slug)
        return meta

    def get_game(self, slug: str) -> GameMeta | None:
        path = self._game_file(slug)
        if not path.exists():
            return None
        return GameMeta.model_validate_json(path.read_text())

    def list_games(self) -> list[GameMeta]:
        return [
            GameMeta.model_validate_json(path.read_text())
            for path in sorted(self._games_root.glob("*.json"))
        ]

    def delete_game(self, slug: str) -> bool:
        path = self._game_file(slug)
        if not path.exists():
            return False
        path.unlink()
        if self._game_dir(slug).exists():
            shutil.rmtree(self._game_dir(slug))
        logger.info("deleted game %s", slug)
        return True

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def save_state(self, slug: str, snapshot: GameSnapshot) -> None:
        self._game_dir(slug).mkdir(exist_ok=True)
        self._write_json(self._state_file(slug), snapshot.model_dump(mode="json"))

    def load_state(self, slug: str) -> GameSnapshot | None:
        path = self._state_file(slug)
        if not path.exists():
            return None
        return GameSnapshot.model_validate_json(path.read_text())
