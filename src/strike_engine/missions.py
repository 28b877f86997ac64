"""
Mission catalogue: built-in missions from JSON plus custom missions in sqlite.
"""

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .models import Mission

logger = logging.getLogger(__name__)

DEFAULT_CATALOGUE = Path(__file__).parent / "data" / "missions.json"

DIFFICULTY_ORDER = ['Easy', 'Medium', 'Hard', 'Extreme']

DIFFICULTY_DESCRIPTIONS = {
    'Easy': 'the threat is manageable with basic coordination',
    'Medium': 'the threat requires careful planning and teamwork',
    'Hard': 'the threat is extremely dangerous and requires expert coordination',
    'Extreme': 'the threat is potentially catastrophic and requires perfect execution',
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS missions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    threat TEXT NOT NULL,
    objectives TEXT NOT NULL,
    danger_factors TEXT NOT NULL,
    difficulty TEXT NOT NULL,
    is_custom INTEGER NOT NULL DEFAULT 1,
    created_at TEXT,
    created_by TEXT
)
"""

EDITABLE_FIELDS = ('name', 'description', 'threat', 'objectives', 'danger_factors', 'difficulty')


@dataclass
class MissionBriefing:
    mission: Mission
    briefing_text: str
    key_considerations: List[str] = field(default_factory=list)
    success_conditions: List[str] = field(default_factory=list)
    failure_conditions: List[str] = field(default_factory=list)


class MissionStore:
    def __init__(self, db_path: str = ":memory:", catalogue_path: Optional[Path] = DEFAULT_CATALOGUE):
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(SCHEMA)
        self.conn.commit()
        self.default_missions = self._load_catalogue(catalogue_path) if catalogue_path else []

    def _load_catalogue(self, path: Path) -> List[Mission]:
        with open(path, 'r', encoding='utf-8') as f:
            entries = json.load(f)
        missions = [Mission(**{**entry, 'is_custom': False}) for entry in entries]
        logger.info(f"Loaded {len(missions)} built-in missions from {path}")
        return missions

    def close(self) -> None:
        self.conn.close()

    @staticmethod
    def _row_to_mission(row: sqlite3.Row) -> Mission:
        return Mission(
            id=row['id'],
            name=row['name'],
            description=row['description'],
            threat=row['threat'],
            objectives=json.loads(row['objectives']),
            danger_factors=json.loads(row['danger_factors']),
            difficulty=row['difficulty'],
            is_custom=bool(row['is_custom']),
            created_at=row['created_at'],
            created_by=row['created_by'],
        )

    def _custom_missions(self) -> List[Mission]:
        with self._lock:
            rows = self.conn.execute("SELECT * FROM missions WHERE is_custom = 1").fetchall()
        return [self._row_to_mission(row) for row in rows]

    def list_missions(
        self,
        difficulty: Optional[Sequence[str]] = None,
        is_custom: Optional[bool] = None
    ) -> List[Mission]:
        """Built-in missions first, then custom; each by difficulty then name."""
        missions = self.default_missions + self._custom_missions()
        if difficulty:
            missions = [m for m in missions if m.difficulty in difficulty]
        if is_custom is not None:
            missions = [m for m in missions if m.is_custom == is_custom]

        def sort_key(mission: Mission):
            rank = (DIFFICULTY_ORDER.index(mission.difficulty)
                    if mission.difficulty in DIFFICULTY_ORDER else len(DIFFICULTY_ORDER))
            return (mission.is_custom, rank, mission.name)

        return sorted(missions, key=sort_key)

    def get_mission(self, mission_id: str) -> Optional[Mission]:
        for mission in self.default_missions:
            if mission.id == mission_id:
                return mission
        with self._lock:
            row = self.conn.execute("SELECT * FROM missions WHERE id = ?", (mission_id,)).fetchone()
        return self._row_to_mission(row) if row else None

    def create_mission(self, data: Dict[str, Any]) -> Mission:
        mission_id = f"custom_{uuid.uuid4().hex[:12]}"
        created_at = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self.conn.execute(
                "INSERT INTO missions (id, name, description, threat, objectives, danger_factors,"
                " difficulty, is_custom, created_at, created_by) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)",
                (
                    mission_id,
                    data['name'],
                    data['description'],
                    data['threat'],
                    json.dumps(data.get('objectives', [])),
                    json.dumps(data.get('danger_factors', [])),
                    data.get('difficulty', 'Medium'),
                    created_at,
                    data.get('created_by') or 'admin',
                ),
            )
            self.conn.commit()
        logger.info(f"Custom mission {mission_id} created: {data['name']}")
        return self.get_mission(mission_id)

    def update_mission(self, mission_id: str, data: Dict[str, Any]) -> Optional[Mission]:
        """Update a custom mission; built-in missions are read-only."""
        updates, values = [], []
        for name in EDITABLE_FIELDS:
            if data.get(name) is None:
                continue
            value = data[name]
            if name in ('objectives', 'danger_factors'):
                value = json.dumps(value)
            updates.append(f"{name} = ?")
            values.append(value)

        if updates:
            with self._lock:
                self.conn.execute(
                    f"UPDATE missions SET {', '.join(updates)} WHERE id = ? AND is_custom = 1",
                    (*values, mission_id),
                )
                self.conn.commit()

        mission = self.get_mission(mission_id)
        if mission is None or not mission.is_custom:
            return None
        return mission

    def delete_mission(self, mission_id: str) -> bool:
        with self._lock:
            cursor = self.conn.execute(
                "DELETE FROM missions WHERE id = ? AND is_custom = 1", (mission_id,)
            )
            self.conn.commit()
        return cursor.rowcount > 0

    def get_briefing(self, mission_id: str) -> Optional[MissionBriefing]:
        mission = self.get_mission(mission_id)
        if mission is None:
            return None

        considerations = [
            'Team composition and ability synergy',
            'Risk assessment and mitigation strategies',
            'Civilian safety and evacuation procedures',
            'Resource management and energy conservation',
            'Communication and coordination protocols',
        ]
        if mission.difficulty in ('Hard', 'Extreme'):
            considerations.append('Potential for unexpected complications')
            considerations.append('Need for backup plans and contingencies')

        return MissionBriefing(
            mission=mission,
            briefing_text=build_briefing_text(mission),
            key_considerations=considerations,
            success_conditions=[
                'All primary objectives completed',
                'Team members survive or casualties minimized',
                'Threat neutralized or contained',
                'Civilian casualties prevented or minimized',
            ],
            failure_conditions=[
                'Critical objectives not achieved',
                'Excessive team casualties',
                'Threat escapes or spreads',
                'Unacceptable civilian casualties',
            ],
        )


def build_briefing_text(mission: Mission) -> str:
    objectives = "\n".join(f"{i + 1}. {o}" for i, o in enumerate(mission.objectives))
    dangers = "\n".join(f"{i + 1}. {d}" for i, d in enumerate(mission.danger_factors))
    difficulty = DIFFICULTY_DESCRIPTIONS.get(mission.difficulty, 'the threat level is unknown')
    return (
        f"**MISSION BRIEFING: {mission.name}**\n\n"
        f"**THREAT ASSESSMENT:**\n{mission.threat}\n\n"
        f"**MISSION OBJECTIVES:**\n{objectives}\n\n"
        f"**DANGER FACTORS:**\n{dangers}\n\n"
        f"**BRIEFING NOTES:**\nThe threat level is {mission.difficulty.lower()}, which means {difficulty}. "
        "Every member's abilities matter; complete the mission while keeping casualties low."
    )
