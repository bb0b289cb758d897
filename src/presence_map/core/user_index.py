"""UserIndex - which location each connected user is counted at."""

from typing import Dict, ItemsView, List, Optional


class UserIndex:
    """
    Maps user IDs to their current location key.

    A user without an entry is not active anywhere.
    """

    def __init__(self) -> None:
        self._user_to_key: Dict[str, str] = {}

    def get(self, user_id: str) -> Optional[str]:
        return self._user_to_key.get(user_id)

    def set(self, user_id: str, key: str) -> None:
        self._user_to_key[user_id] = key

    def remove(self, user_id: str) -> None:
        self._user_to_key.pop(user_id, None)

    def users_at(self, key: str) -> List[str]:
        """Get the IDs of all users indexed at a location key."""
        return [user_id for user_id, k in self._user_to_key.items() if k == key]

    def items(self) -> ItemsView[str, str]:
        return self._user_to_key.items()

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._user_to_key

    def __len__(self) -> int:
        return len(self._user_to_key)
