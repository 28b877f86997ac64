"""
Card factories for tests.
"""

from strike_engine.models import CharacterCard


def make_card(**overrides) -> CharacterCard:
    """A plain card with no ability-granting attributes unless overridden."""
    values = {
        'rank': 'Grade 2',
        'cursed_technique': 'Construction',
        'energy_level': 'Average',
        'general_techniques': ['Simple Domain'],
        'tools': [],
        'strengths': ['Speed'],
        'weaknesses': ['Arrogance'],
        'special_traits': [],
        'current_state': 'Injured',
    }
    values.update(overrides)
    return CharacterCard.from_values(**values)


class FixedCharacters:
    """Hands out prepared cards in seating order, then plain ones."""

    def __init__(self, cards=None):
        self.cards = list(cards or [])

    def generate(self) -> CharacterCard:
        if self.cards:
            return self.cards.pop(0)
        return make_card()
