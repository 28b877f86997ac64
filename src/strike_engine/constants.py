"""Game constants and utilities"""

# Phases
PHASE_LOBBY = 'lobby'
PHASE_BRIEFING = 'briefing'
PHASE_REVEAL = 'reveal'
PHASE_DISCUSSION = 'discussion'
PHASE_VOTING = 'voting'
PHASE_ROUND_END = 'round_end'
PHASE_COMPLETE = 'complete'

PHASES = [
    PHASE_LOBBY, PHASE_BRIEFING, PHASE_REVEAL, PHASE_DISCUSSION,
    PHASE_VOTING, PHASE_ROUND_END, PHASE_COMPLETE,
]

# Phases in which abilities may be activated
ABILITY_PHASES = (PHASE_REVEAL, PHASE_DISCUSSION, PHASE_VOTING)

# Manual (host-triggered) phase edges
MANUAL_ADVANCE = {
    PHASE_BRIEFING: PHASE_REVEAL,
    PHASE_DISCUSSION: PHASE_VOTING,
    PHASE_VOTING: PHASE_ROUND_END,
}

# Player roles
ROLE_HOST = 'host'
ROLE_PARTICIPANT = 'participant'

# Skip ballot marker
SKIP = 'SKIP'

# Consecutive no-elimination rounds after which a skip ballot is refused
MAX_CONSECUTIVE_SKIPS = 2

# Character card categories, fixed index order shared by generator,
# reveal operation and client projection
CATEGORY_KEYS = [
    'rank',
    'cursed_technique',
    'energy_level',
    'general_techniques',
    'tools',
    'strengths',
    'weaknesses',
    'special_traits',
    'current_state',
]

CATEGORY_NAMES = [
    'Rank',
    'Cursed Technique',
    'Cursed Energy Level',
    'General Techniques',
    'Cursed Tools',
    'Strengths',
    'Weaknesses',
    'Special Traits',
    'Current State',
]

HEALTHY_STATE = 'Healthy'
SUPPRESSED_TECHNIQUE = 'None (Suppressed)'

ROOM_CODE_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'


def format_value(value) -> str:
    if isinstance(value, (list, tuple)):
        return ', '.join(str(v) for v in value)
    return str(value)
