"""
FlowDeck Notices

Dismissible, time-limited banners shown when the runtime cannot be
reached or rejects a request.
"""

import itertools
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from flow_editor.config import get_config


@dataclass
class Notice:
    id: int
    text: str
    level: str
    created_at: float
    expires_at: Optional[float] = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> Dict:
        return {"id": self.id, "text": self.text, "level": self.level}


class NoticeBoard:
    """Active banners, oldest first."""

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        if ttl is None:
            ttl = get_config().notices.banner_ttl
        self.ttl = ttl
        self.clock = clock
        self._notices: List[Notice] = []
        self._ids = itertools.count(1)

    def post(self, text: str, level: str = 'error', ttl: Optional[float] = None) -> Notice:
        """Show a banner. A ttl of 0 keeps it until dismissed."""
        now = self.clock()
        lifetime = self.ttl if ttl is None else ttl
        notice = Notice(
            id=next(self._ids),
            text=text,
            level=level,
            created_at=now,
            expires_at=now + lifetime if lifetime else None,
        )
        self._notices.append(notice)
        return notice

    def dismiss(self, notice_id: int) -> bool:
        for notice in self._notices:
            if notice.id == notice_id:
                self._notices.remove(notice)
                return True
        return False

    def active(self) -> List[Notice]:
        now = self.clock()
        self._notices = [n for n in self._notices if not n.expired(now)]
        return list(self._notices)

    def clear(self):
        self._notices.clear()
