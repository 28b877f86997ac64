"""
In-memory registry of live rooms keyed by room code.
"""

import logging
import random
import threading
import time
from collections import defaultdict
from typing import Dict, List, Optional

from .constants import ROOM_CODE_ALPHABET
from .errors import CAPACITY, INTERNAL_ERROR, raise_error
from .models import RoomState
from .rules import RuleConfig, default_rules

logger = logging.getLogger(__name__)


class RoomDirectory:
    def __init__(self, rules: RuleConfig = default_rules, rng: Optional[random.Random] = None):
        self.rules = rules
        self.rng = rng or random.Random()
        self.rooms: Dict[str, RoomState] = {}
        self.room_locks = defaultdict(threading.Lock)
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.rooms)

    def __contains__(self, code: str) -> bool:
        return code in self.rooms

    def lock_for(self, code: str) -> threading.Lock:
        with self._registry_lock:
            return self.room_locks[code]

    def get(self, code: str) -> Optional[RoomState]:
        return self.rooms.get(code)

    def codes(self) -> List[str]:
        return list(self.rooms)

    def generate_code(self) -> str:
        """Draw random codes until one is unused; caller holds the registry lock."""
        for _ in range(self.rules.room_code_attempts):
            code = ''.join(
                self.rng.choice(ROOM_CODE_ALPHABET) for _ in range(self.rules.room_code_length)
            )
            if code not in self.rooms:
                return code
        raise_error(INTERNAL_ERROR, "Could not generate a unique room code")

    def create(self, host_id: str) -> RoomState:
        """
        Register a new lobby room.

        Raises:
            GameError: room limit reached or code space exhausted
        """
        with self._registry_lock:
            if len(self.rooms) >= self.rules.max_rooms:
                raise_error(CAPACITY, "Maximum number of rooms reached")
            code = self.generate_code()
            room = RoomState(
                code=code,
                host_id=host_id,
                target_survivors=self.rules.default_target_survivors,
            )
            self.rooms[code] = room
        logger.info(f"Room {code} created ({len(self.rooms)} live)")
        return room

    def delete(self, code: str) -> bool:
        """Drop a room and cancel its pending timer; caller holds the room lock."""
        with self._registry_lock:
            room = self.rooms.pop(code, None)
            self.room_locks.pop(code, None)
        if room is None:
            return False
        if room.pending_timer is not None:
            room.pending_timer.cancel()
            room.pending_timer = None
        logger.info(f"Room {code} deleted")
        return True

    def is_idle(self, room: RoomState, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        if any(p.connected for p in room.players.values()):
            return False
        return now - room.last_activity >= self.rules.room_idle_timeout
