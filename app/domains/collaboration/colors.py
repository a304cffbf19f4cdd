from collections import Counter
from typing import List, Sequence

from app.core.config import ColorPolicy
from app.domains.collaboration.entities import Participant


class ColorAssigner:
    """Picks a display color for a participant joining a session.

    ``round_robin`` cycles through the palette by roster position, so colors
    repeat once the roster outgrows the palette. ``least_used`` hands out the
    color held by the fewest participants, palette order breaking ties.
    """

    def __init__(self, palette: Sequence[str], policy: ColorPolicy = ColorPolicy.ROUND_ROBIN):
        if not palette:
            raise ValueError("Color palette must not be empty")
        self.palette: List[str] = list(palette)
        self.policy = ColorPolicy(policy)

    def next_color(self, participants: Sequence[Participant]) -> str:
        if self.policy == ColorPolicy.LEAST_USED:
            usage = Counter(p.color for p in participants)
            return min(self.palette, key=lambda color: usage.get(color, 0))
        return self.palette[len(participants) % len(self.palette)]
