"""
Mission epilogue generation using the OpenAI chat completions API.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from openai import OpenAI

from .constants import CATEGORY_NAMES, format_value
from .models import CharacterCard, Mission

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class NarrativeError(Exception):
    """Raised when the LLM call fails or returns nothing."""

    def __init__(self, room_code: str, message: str = ""):
        self.room_code = room_code
        self.message = message or f"Epilogue generation failed for room {room_code}"
        super().__init__(self.message)


@dataclass
class MissionSummary:
    """Everything the storyteller needs about a finished game."""
    room_code: str
    mission: Mission
    survivors: List[Tuple[str, CharacterCard]] = field(default_factory=list)
    eliminated: List[Tuple[str, CharacterCard, int]] = field(default_factory=list)
    total_rounds: int = 0
    consecutive_skips: int = 0


def describe_character(card: CharacterCard) -> str:
    lines = []
    for index, name in enumerate(CATEGORY_NAMES):
        value = card.category(index).value
        lines.append(f"   - {name}: {format_value(value) or 'None'}")
    return "\n".join(lines)


def build_prompt(summary: MissionSummary) -> str:
    mission = summary.mission
    objectives = "\n".join(f"{i + 1}. {o}" for i, o in enumerate(mission.objectives))
    dangers = "\n".join(f"{i + 1}. {d}" for i, d in enumerate(mission.danger_factors))
    team = "\n\n".join(
        f"{i + 1}. Sorcerer {name}\n{describe_character(card)}"
        for i, (name, card) in enumerate(summary.survivors)
    )
    left_behind = "\n".join(
        f"- {name} (voted out in round {round_number})"
        for name, _, round_number in summary.eliminated
    ) or "- nobody"

    return f"""You are the storyteller for a dark-fantasy social deduction game about a team of jujutsu sorcerers.

## RULES
Each round the players reveal one characteristic of their sorcerer, discuss who is least useful for the mission,
and vote one player off the strike team (skipping at most twice in a row). The game ends once the team is
down to the required size, and the remaining sorcerers go on the mission.

## MISSION
**Name:** {mission.name}
**Description:** {mission.description}
**Threat:** {mission.threat}
**Difficulty:** {mission.difficulty}

**Objectives:**
{objectives}

**Danger factors:**
{dangers}

## RESULTS
**Rounds played:** {summary.total_rounds}
**Consecutive skipped votes at the end:** {summary.consecutive_skips}

**Strike team ({len(summary.survivors)} sorcerers):**
{team}

**Left behind:**
{left_behind}

## TASK
Write a 400-600 word epilogue that describes the mission as it unfolds, uses the concrete characteristics of
each sorcerer on the team by name, weighs their strengths against their weaknesses fairly, and judges whether
the objectives were met. Begin with "Mission complete." and finish with a single verdict: "**SUCCESS**" or
"**FAILURE**".
"""


class EpilogueGenerator:
    """Turns a finished game into prose through one chat completion."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        max_tokens: int = 4000
    ):
        self.client = client
        self.model = model or os.getenv("STRIKE_LLM_MODEL", DEFAULT_MODEL)
        self.max_tokens = max_tokens

    def _get_client(self) -> OpenAI:
        if self.client is None:
            self.client = OpenAI(
                api_key=os.getenv("OPENAI_API_KEY"),
                base_url=os.getenv("STRIKE_LLM_BASE_URL") or None,
            )
        return self.client

    def generate(self, summary: MissionSummary) -> str:
        """
        Generate the epilogue for a finished game.

        Raises:
            NarrativeError: the API call failed or returned no content
        """
        prompt = build_prompt(summary)
        logger.info(
            f"[{summary.room_code}] Generating epilogue for mission '{summary.mission.name}': "
            f"{len(summary.survivors)} survivors, {len(summary.eliminated)} eliminated"
        )
        try:
            start_time = time.time()
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
            )
            latency_ms = (time.time() - start_time) * 1000
        except Exception as e:
            raise NarrativeError(summary.room_code, f"LLM API call failed: {e}")

        content = response.choices[0].message.content if response.choices else None
        content = (content or "").strip()
        if not content:
            raise NarrativeError(summary.room_code, f"LLM returned an empty epilogue (model {self.model})")

        logger.info(f"[{summary.room_code}] Epilogue ready: {len(content)} chars in {latency_ms:.0f} ms")
        return content
