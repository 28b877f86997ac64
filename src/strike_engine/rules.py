"""
Game rule configuration and validation.
"""

import os

from pydantic import BaseModel, Field, field_validator


ENV_PREFIX = "STRIKE_"


class RuleConfig(BaseModel):
    """Configuration for session rules and directory limits."""

    min_players: int = Field(
        default=3,
        ge=3,
        le=16,
        description="Minimum number of players required to start"
    )
    max_players: int = Field(
        default=16,
        ge=3,
        le=64,
        description="Maximum number of players allowed in a room"
    )
    default_target_survivors: int = Field(
        default=3,
        ge=1,
        description="Survivor target a new room starts with"
    )
    max_rooms: int = Field(
        default=100,
        ge=1,
        description="Maximum number of live rooms"
    )
    room_code_length: int = Field(
        default=6,
        ge=4,
        le=12,
        description="Length of generated room codes"
    )
    room_code_attempts: int = Field(
        default=100,
        ge=1,
        description="Attempts at drawing an unused room code before giving up"
    )
    tally_delay: float = Field(
        default=2.0,
        ge=0,
        le=30,
        description="Seconds between the last ballot and the round_end transition"
    )
    room_idle_timeout: int = Field(
        default=1800,
        ge=0,
        description="Seconds a room with no connected players survives"
    )
    sweep_interval: int = Field(
        default=300,
        ge=1,
        description="Seconds between idle-room sweeps"
    )
    max_ability_uses: int = Field(
        default=1,
        ge=1,
        description="Uses granted to each detected ability"
    )

    @field_validator('max_players')
    @classmethod
    def validate_max_players(cls, v, info):
        """Validate maximum players doesn't undercut minimum."""
        min_players = info.data.get('min_players', 3)
        if v < min_players:
            raise ValueError(f'max_players ({v}) must be >= min_players ({min_players})')
        return v

    def validate_player_count(self, player_count: int) -> bool:
        """Check if a player count is valid for starting a game."""
        return self.min_players <= player_count <= self.max_players

    @classmethod
    def from_env(cls) -> 'RuleConfig':
        """Build a config from STRIKE_* environment variables."""
        overrides = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                overrides[name] = raw
        return cls(**overrides)


# Default configuration instance
default_rules = RuleConfig()


def create_rules(**overrides) -> RuleConfig:
    """Create a RuleConfig with optional overrides."""
    config_dict = default_rules.model_dump()
    config_dict.update(overrides)
    return RuleConfig(**config_dict)
