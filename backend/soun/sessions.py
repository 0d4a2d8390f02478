from __future__ import annotations
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Generic, Optional, TypeVar

from .settings import settings

S = TypeVar("S")


class SessionStore(Generic[S]):
	"""Process-local session map with idle expiry and a size cap.

	Entries are ordered by last access; when the cap is reached the least
	recently used entry is evicted.
	"""

	def __init__(self, ttl: Optional[timedelta] = None, max_size: Optional[int] = None, *, clock: Callable[[], datetime] = datetime.utcnow) -> None:
		self.ttl = ttl if ttl is not None else timedelta(minutes=settings.session_ttl_minutes)
		self.max_size = max_size if max_size is not None else settings.max_live_sessions
		self._clock = clock
		self._entries: "OrderedDict[str, tuple[datetime, S]]" = OrderedDict()

	def __len__(self) -> int:
		return len(self._entries)

	def __contains__(self, session_id: str) -> bool:
		return self.get(session_id) is not None

	def add(self, state: S, session_id: Optional[str] = None) -> str:
		session_id = session_id or uuid.uuid4().hex
		self._entries[session_id] = (self._clock(), state)
		self._entries.move_to_end(session_id)
		while len(self._entries) > self.max_size:
			self._entries.popitem(last=False)
		return session_id

	def get(self, session_id: str) -> Optional[S]:
		entry = self._entries.get(session_id)
		if entry is None:
			return None
		touched, state = entry
		now = self._clock()
		if now - touched > self.ttl:
			del self._entries[session_id]
			return None
		self._entries[session_id] = (now, state)
		self._entries.move_to_end(session_id)
		return state

	def pop(self, session_id: str) -> Optional[S]:
		entry = self._entries.pop(session_id, None)
		return entry[1] if entry else None

	def purge_expired(self) -> int:
		threshold = self._clock() - self.ttl
		expired = [sid for sid, (touched, _) in self._entries.items() if touched < threshold]
		for sid in expired:
			del self._entries[sid]
		return len(expired)

	def clear(self) -> None:
		self._entries.clear()
