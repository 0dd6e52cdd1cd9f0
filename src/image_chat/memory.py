"""In-memory conversation history keyed by session id (process lifetime)."""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .turns import Turn

DEFAULT_SESSION = "default"


@dataclass
class EvictionPolicy:
    """Bounds on the session map. ``None`` disables a bound."""
    max_sessions: Optional[int] = 1000   # least-recently-used sessions dropped beyond this
    ttl_seconds: Optional[float] = None  # idle sessions older than this are dropped


# -----------------------------
# SessionHistory
# -----------------------------
class SessionHistory:
    """Ordered turns per session, appended {user, model} per exchange.

    Turns are never reordered or removed individually; a whole session can
    only disappear through :meth:`clear` or eviction. The lock keeps the map
    consistent, but two concurrent requests for the same session may still
    interleave their exchanges.
    """

    def __init__(
        self,
        *,
        max_sessions: Optional[int] = 1000,
        ttl_seconds: Optional[float] = None,
        clock: Any = time.monotonic,
    ) -> None:
        self.policy = EvictionPolicy(max_sessions=max_sessions, ttl_seconds=ttl_seconds)
        self._clock = clock
        self._sessions: "OrderedDict[str, Tuple[float, List[Turn]]]" = OrderedDict()
        self._lock = threading.RLock()

    # --------- core API ----------
    def get(self, session_id: Optional[str]) -> List[Turn]:
        """Return a copy of the session's turns, creating the entry if unseen."""
        with self._lock:
            return list(self._touch(session_id or DEFAULT_SESSION))

    def peek(self, session_id: str) -> Optional[List[Turn]]:
        """Return a copy of the session's turns, or None; never creates or refreshes an entry."""
        with self._lock:
            self._expire()
            entry = self._sessions.get(session_id)
            return list(entry[1]) if entry else None

    def append(self, session_id: Optional[str], turn: Turn) -> None:
        self.extend(session_id, [turn])

    def extend(self, session_id: Optional[str], turns: Iterable[Turn]) -> None:
        """Append several turns (one exchange) under a single lock acquisition."""
        with self._lock:
            self._touch(session_id or DEFAULT_SESSION).extend(turns)

    # --------- convenience ----------
    def clear(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list_sessions(self) -> List[str]:
        with self._lock:
            self._expire()
            return list(self._sessions.keys())

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            self._expire()
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            self._expire()
            return len(self._sessions)

    # --------- internals ----------
    def _touch(self, session_id: str) -> List[Turn]:
        self._expire()
        now = self._clock()
        entry = self._sessions.pop(session_id, None)
        turns: List[Turn] = entry[1] if entry else []
        self._sessions[session_id] = (now, turns)

        limit = self.policy.max_sessions
        if limit is not None and limit > 0:
            while len(self._sessions) > limit:
                self._sessions.popitem(last=False)
        return turns

    def _expire(self) -> None:
        ttl = self.policy.ttl_seconds
        if ttl is None:
            return
        cutoff = self._clock() - ttl
        # Oldest first; stop at the first session still inside the window.
        while self._sessions:
            sid, (seen, _) = next(iter(self._sessions.items()))
            if seen >= cutoff:
                break
            del self._sessions[sid]


def create_from_config(cfg: Dict[str, Any]) -> SessionHistory:
    hist_cfg = (cfg or {}).get("history", {}) if isinstance(cfg, dict) else {}
    max_sessions = hist_cfg.get("max_sessions", 1000)
    ttl = hist_cfg.get("ttl_seconds")
    return SessionHistory(
        max_sessions=int(max_sessions) if max_sessions is not None else None,
        ttl_seconds=float(ttl) if ttl is not None else None,
    )
