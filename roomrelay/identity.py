from __future__ import annotations

import logging

from .constants import HOST_ROLE_NAME, LABEL_COMMA, LABEL_PRENS
from .errors import IdentityConflict
from .util import numeric_part


class IdentityRegistry:
    """
    Assigns and tracks unique display identities per connection.

    This class is responsible for:
    - Minting default ``u<N>`` display names from a shared counter
    - Reattaching a previous display name on reconnect
    - Nickname and team bookkeeping, with nickname disambiguation
    - Composing the display labels rendered in chat transcripts

    Must be used with the relay state lock held.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("roomrelay.identity")
        self._counter = 0
        self._name_by_id: dict[str, str] = {}
        self._id_by_name: dict[str, str] = {}
        self._nick_by_id: dict[str, str] = {}
        self._team_by_id: dict[str, str] = {}

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._name_by_id

    def __len__(self) -> int:
        return len(self._name_by_id)

    @property
    def counter(self) -> int:
        return self._counter

    def register_new(
        self,
        connection_id: str,
        team: str | None = None,
        nick: str | None = None,
    ) -> str:
        """Mint the next unused ``u<N>`` name for ``connection_id``."""
        self._counter += 1
        name = f"u{self._counter}"
        while name in self._id_by_name:
            self._counter += 1
            name = f"u{self._counter}"

        self._bind(connection_id, name)
        self.set_team(connection_id, team)
        self.set_nickname(connection_id, nick)
        return name

    def reattach(
        self,
        connection_id: str,
        existing_name: str,
        team: str | None = None,
        nick: str | None = None,
    ) -> str:
        """
        Reuse a display name from an earlier connection.

        Does not consume a counter value. Raises IdentityConflict if the name
        belongs to a different live connection.
        """
        owner = self._id_by_name.get(existing_name)
        if owner is not None and owner != connection_id:
            raise IdentityConflict(existing_name, owner)

        self._bind(connection_id, existing_name)
        self.set_team(connection_id, team)
        self.set_nickname(connection_id, nick)
        return existing_name

    def _bind(self, connection_id: str, name: str) -> None:
        old = self._name_by_id.get(connection_id)
        if old is not None and old != name:
            self._id_by_name.pop(old, None)
        self._name_by_id[connection_id] = name
        self._id_by_name[name] = connection_id

    def set_nickname(self, connection_id: str, nick: str | None) -> str | None:
        """
        Store a nickname, disambiguating it if another connection holds it.

        The suffix is derived from the connection's numeric identity, so
        ``Alice`` on ``u7`` becomes ``Alice.7``. Returns the stored nickname.
        """
        if connection_id not in self._name_by_id:
            return None

        if not nick:
            self._nick_by_id.pop(connection_id, None)
            return None

        taken = {
            n for cid, n in self._nick_by_id.items() if cid != connection_id
        }
        stored = nick
        if stored in taken:
            suffix = numeric_part(self._name_by_id[connection_id]) or str(self._counter)
            while stored in taken:
                stored = f"{stored}.{suffix}"
            self.log.info(
                "Nickname %r in use; stored %r for %s",
                nick,
                stored,
                self._name_by_id[connection_id],
            )

        self._nick_by_id[connection_id] = stored
        return stored

    def set_team(self, connection_id: str, team: str | None) -> None:
        if connection_id not in self._name_by_id:
            return
        if team:
            self._team_by_id[connection_id] = team
        else:
            self._team_by_id.pop(connection_id, None)

    def name_of(self, connection_id: str) -> str | None:
        return self._name_by_id.get(connection_id)

    def nick_of(self, connection_id: str) -> str | None:
        return self._nick_by_id.get(connection_id)

    def team_of(self, connection_id: str) -> str | None:
        return self._team_by_id.get(connection_id)

    def id_for_name(self, name: str) -> str | None:
        return self._id_by_name.get(name)

    def id_for_nick(self, nick: str) -> str | None:
        # Insertion order of the dict is registration order.
        for cid, n in self._nick_by_id.items():
            if n == nick:
                return cid
        return None

    def resolve_name(self, name: str) -> str | None:
        """Nickname match first, then display name."""
        cid = self.id_for_nick(name)
        if cid is not None:
            return cid
        return self.id_for_name(name)

    def display_label(
        self, connection_id: str, mode: str = LABEL_COMMA, *, is_host: bool = False
    ) -> str:
        base = HOST_ROLE_NAME if is_host else self._name_by_id.get(connection_id, "")
        nick = self._nick_by_id.get(connection_id)
        if not nick:
            return base

        team = self._team_by_id.get(connection_id)
        head = f"{nick} [{team}]" if team else nick
        if mode == LABEL_PRENS:
            return f"{head} ({base})"
        return f"{head}, {base}"

    def remove(self, connection_id: str) -> str | None:
        """Delete every entry for ``connection_id``. Returns the old name."""
        name = self._name_by_id.pop(connection_id, None)
        if name is not None and self._id_by_name.get(name) == connection_id:
            self._id_by_name.pop(name, None)
        self._nick_by_id.pop(connection_id, None)
        self._team_by_id.pop(connection_id, None)
        return name

    def clear_all(self) -> None:
        self._name_by_id.clear()
        self._id_by_name.clear()
        self._nick_by_id.clear()
        self._team_by_id.clear()

    def get_stats(self) -> dict[str, int]:
        return {
            "names": len(self._name_by_id),
            "nicknames": len(self._nick_by_id),
            "teams": len(self._team_by_id),
            "counter": self._counter,
        }
