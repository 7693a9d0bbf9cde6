"""Display names for anonymous identities."""

from __future__ import annotations

import random
from typing import Final

ADJECTIVES: Final[tuple[str, ...]] = ("Creative", "Inspired", "Talented", "Artistic", "Innovative")
NOUNS: Final[tuple[str, ...]] = ("Creator", "Artist", "Influencer", "Visionary", "Storyteller")


def generate_display_name(rng: random.Random | None = None) -> str:
    chooser = rng or random.SystemRandom()
    return f"{chooser.choice(ADJECTIVES)} {chooser.choice(NOUNS)}"
