"""
Character card generation from weighted attribute tables.
"""

import random
from typing import List, Optional, Sequence, Tuple

from .constants import HEALTHY_STATE
from .models import CharacterCard

Weighted = Tuple[str, int]

RANKS: List[Weighted] = [
    ('Grade 4', 20),
    ('Grade 3', 22),
    ('Semi-Grade 2', 16),
    ('Grade 2', 14),
    ('Semi-Grade 1', 10),
    ('Grade 1', 8),
    ('Special Grade 1', 5),
    ('Special Grade', 4),
    ('Strongest Level', 1),
]

CURSED_TECHNIQUES: List[Weighted] = [
    ('Ten Shadows', 6),
    ('Straw Doll', 10),
    ('Cursed Speech', 7),
    ('Boogie Woogie', 8),
    ('Ratio Technique', 9),
    ('Blood Manipulation', 8),
    ('Idle Transfiguration', 4),
    ('Limitless', 1),
    ('Cursed Spirit Manipulation', 3),
    ('Construction', 10),
    ('Projection Sorcery', 6),
    ('Comedian', 5),
]

ENERGY_LEVELS: List[Weighted] = [
    ('Very Low', 8),
    ('Low', 16),
    ('Average', 26),
    ('Above Average', 20),
    ('High', 15),
    ('Enormous', 9),
    ('Okkotsu Level', 4),
    ('Sukuna Level', 2),
]

GENERAL_TECHNIQUES: List[Weighted] = [
    ('Reverse Cursed Technique Output', 3),
    ('Reverse Cursed Technique (Self Only)', 6),
    ('Black Flash', 5),
    ('Domain Expansion', 3),
    ('Simple Domain', 12),
    ('Falling Blossom Emotion', 6),
    ('Curtain', 15),
    ('Cursed Energy Reinforcement', 20),
    ('Binding Vow', 10),
]

TOOLS: List[Weighted] = [
    ('Inverted Spear of Heaven', 3),
    ('Chain of a Thousand Miles', 4),
    ('Dragon-Bone', 4),
    ('Playful Cloud', 5),
    ('Split Soul Katana', 5),
    ('Slaughter Demon', 12),
    ('Cursed Nails', 14),
]

STRENGTHS: List[Weighted] = [
    ('Tactical Mind', 10),
    ('Physical Prowess', 12),
    ('Cursed Energy Control', 10),
    ('Calm Under Pressure', 9),
    ('Teamwork', 11),
    ('Stamina', 10),
    ('Keen Perception', 8),
]

WEAKNESSES: List[Weighted] = [
    ('Reckless', 10),
    ('Low Stamina', 9),
    ('Poor Control', 10),
    ('Overconfident', 11),
    ('Fear of Curses', 7),
    ('Hot-Headed', 9),
    ('Slow Reactions', 8),
]

SPECIAL_TRAITS: List[Weighted] = [
    ('Six Eyes', 2),
    ('Reincarnated Sorcerer', 3),
    ('Heavenly Restriction', 4),
    ('Vessel', 2),
    ('Cursed Womb', 3),
]

STATES: List[Weighted] = [
    (HEALTHY_STATE, 30),
    ('Injured', 14),
    ('Badly Injured', 7),
    ('Critically Injured', 3),
    ('Emotionally Unstable', 6),
    ('Exhausted', 8),
    ('Cursed', 4),
    ('Determined', 10),
    ('Focused', 10),
    ('Suspicious', 8),
]


class CharacterGenerator:
    """Draws random character cards, deterministically if seeded."""

    def __init__(
        self,
        seed: Optional[int] = None,
        tool_chance: float = 0.4,
        special_trait_chance: float = 0.15
    ):
        self.rng = random.Random(seed)
        self.tool_chance = tool_chance
        self.special_trait_chance = special_trait_chance

    def generate(self) -> CharacterCard:
        tools = self.pick_many(TOOLS, 1, 2) if self.rng.random() < self.tool_chance else []
        special_traits = (
            [self.pick(SPECIAL_TRAITS)] if self.rng.random() < self.special_trait_chance else []
        )
        return CharacterCard.from_values(
            rank=self.pick(RANKS),
            cursed_technique=self.pick(CURSED_TECHNIQUES),
            energy_level=self.pick(ENERGY_LEVELS),
            general_techniques=self.pick_many(GENERAL_TECHNIQUES, 0, 3),
            tools=tools,
            strengths=self.pick_many(STRENGTHS, 1, 2),
            weaknesses=self.pick_many(WEAKNESSES, 1, 2),
            special_traits=special_traits,
            current_state=self.pick(STATES),
        )

    def pick(self, items: Sequence[Weighted]) -> str:
        """Weighted choice of a single entry."""
        total = sum(weight for _, weight in items)
        roll = self.rng.random() * total
        for name, weight in items:
            roll -= weight
            if roll <= 0:
                return name
        return items[-1][0]

    def pick_many(self, items: Sequence[Weighted], minimum: int, maximum: int) -> List[str]:
        """Weighted choice of a count in [minimum, maximum] without duplicates."""
        count = self.rng.randint(minimum, maximum)
        available = list(items)
        selected = []
        while len(selected) < count and available:
            name = self.pick(available)
            selected.append(name)
            available = [item for item in available if item[0] != name]
        return selected
