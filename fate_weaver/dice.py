"""Fate dice and the adjective ladder.

A Fate die has two blank, one minus and one plus face; it is modelled as a
uniform choice over {-1, 0, +1}. A roll is always four dice (4dF), so the raw
total lies in [-4, +4].

Pass a seeded `random.Random` for repeatable rolls in tests.
"""

from __future__ import annotations

import random

from pydantic import BaseModel, Field

FACES: tuple[int, ...] = (-1, 0, 1)
DICE_COUNT = 4

LADDER: dict[int, str] = {
    8: "Legendary",
    7: "Epic",
    6: "Fantastic",
    5: "Superb",
    4: "Great",
    3: "Good",
    2: "Fair",
    1: "Average",
    0: "Mediocre",
    -1: "Poor",
    -2: "Terrible",
}

SUCCESS_WITH_STYLE_SHIFTS = 3


class RollResult(BaseModel):
    """Four Fate dice and their sum."""

    faces: list[int] = Field(min_length=DICE_COUNT, max_length=DICE_COUNT)
    total: int


def roll(rng: random.Random | None = None) -> RollResult:
    source = rng or random
    faces = [source.choice(FACES) for _ in range(DICE_COUNT)]
    return RollResult(faces=faces, total=sum(faces))


def ladder_label(total: int) -> str:
    """Adjective for a ladder value; off-ladder values render as a signed numeral."""
    label = LADDER.get(total)
    if label is not None:
        return label
    return f"{total:+d}"


def signed(value: int) -> str:
    return f"{value:+d}"


def describe_rating(value: int) -> str:
    """"Fair (+2)" for on-ladder values, "+9" otherwise."""
    if value in LADDER:
        return f"{LADDER[value]} ({signed(value)})"
    return signed(value)


def outcome_for(shifts: int) -> str:
    """Fate outcome name for `total - difficulty`."""
    if shifts < 0:
        return "Fail"
    if shifts == 0:
        return "Tie"
    if shifts < SUCCESS_WITH_STYLE_SHIFTS:
        return "Success"
    return "Success with Style"
