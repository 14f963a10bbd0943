# (c) Copyright Datacraft, 2026
"""Small max-age cache owned by the application lifecycle."""
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable


class TTLCache:
	"""Key/value cache whose entries expire ``max_age`` after they are set."""

	def __init__(
		self,
		max_age: timedelta | float,
		clock: Callable[[], datetime] | None = None,
	):
		if not isinstance(max_age, timedelta):
			max_age = timedelta(seconds=max_age)
		if max_age <= timedelta(0):
			raise ValueError("max_age must be positive")
		self.max_age = max_age
		self._clock = clock or (lambda: datetime.now(timezone.utc))
		self._entries: dict[str, tuple[datetime, Any]] = {}
		self._lock = threading.Lock()

	def get(self, key: str) -> Any | None:
		now = self._clock()
		with self._lock:
			entry = self._entries.get(key)
			if entry is None:
				return None
			cached_at, value = entry
			if now - cached_at >= self.max_age:
				del self._entries[key]
				return None
			return value

	def set(self, key: str, value: Any) -> None:
		with self._lock:
			self._entries[key] = (self._clock(), value)
			self._evict_expired()

	def get_or_create(self, key: str, factory: Callable[[], Any]) -> Any:
		value = self.get(key)
		if value is None:
			value = factory()
			self.set(key, value)
		return value

	def invalidate(self, key: str) -> None:
		with self._lock:
			self._entries.pop(key, None)

	def clear(self) -> None:
		with self._lock:
			self._entries.clear()

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)

	def _evict_expired(self) -> None:
		now = self._clock()
		for key in [k for k, (at, _) in self._entries.items() if now - at >= self.max_age]:
			del self._entries[key]
