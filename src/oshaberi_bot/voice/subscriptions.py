"""Per-connection record of users whose speech is currently being captured."""

from __future__ import annotations


class VoiceSubscriptionRegistry:
    """Maps a voice connection id to the user ids being recorded on it.

    Prevents subscribing twice to the same speaker on one connection.
    Connections never share state.
    """

    def __init__(self) -> None:
        self._active: dict[str, set[str]] = {}

    def try_acquire(self, connection_id: str, user_id: str) -> bool:
        """Mark *user_id* as recording. False when it already is."""
        users = self._active.setdefault(connection_id, set())
        if user_id in users:
            return False
        users.add(user_id)
        return True

    def release(self, connection_id: str, user_id: str) -> None:
        users = self._active.get(connection_id)
        if users is None:
            return
        users.discard(user_id)
        if not users:
            del self._active[connection_id]

    def is_active(self, connection_id: str, user_id: str) -> bool:
        return user_id in self._active.get(connection_id, ())

    def drop_connection(self, connection_id: str) -> None:
        self._active.pop(connection_id, None)
