# =============================================================================
# Chat Timeline - Client-Side Room State
# =============================================================================
#
# The local list of messages a chat client shows for one room. It merges
# three sources:
#
#   1. history       - messages loaded when the room opens
#   2. optimistic    - a message the user just sent, shown immediately
#                      under a temporary id ("temp-<n>")
#   3. realtime      - inserts pushed by the server stream
#
# The send path and the realtime path race: the server ack (carrying the
# real id) and the realtime insert for the same message can arrive in either
# order. Both paths converge on one entry with the server id:
#
#   ack first:      confirm() swaps temp id → server id; the later insert
#                   is dropped as a duplicate id.
#   insert first:   apply_insert() matches the pending optimistic entry by
#                   author and text and takes it over, so the later confirm()
#                   finds nothing to do. If the texts differ the insert is
#                   appended and confirm() drops the temp entry instead.
# =============================================================================

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from datetime import UTC, datetime


@dataclass(frozen=True)
class TimelineMessage:
    id: str
    text: str
    created_at: datetime
    user_id: str
    display_name: str
    avatar_url: str | None = None
    pending: bool = False

    @classmethod
    def from_event(cls, event: dict) -> TimelineMessage:
        """Build from a history item or stream event (camelCase keys)."""
        created_at = event.get("createdAt") or event.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            id=str(event["id"]),
            text=event["text"],
            created_at=created_at or datetime.now(UTC),
            user_id=str(event.get("userId") or event.get("user_id")),
            display_name=event.get("displayName") or event.get("display_name") or "Anonymous",
            avatar_url=event.get("avatarUrl") or event.get("avatar_url"),
        )


class ChatTimeline:
    """Ordered, de-duplicated list of messages for one room."""

    def __init__(self, initial: list[TimelineMessage] | None = None):
        self._messages: list[TimelineMessage] = []
        self._temp_ids = itertools.count(1)
        for message in initial or []:
            self.apply_insert(message)

    @property
    def messages(self) -> list[TimelineMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def _index(self, message_id: str) -> int | None:
        for i, m in enumerate(self._messages):
            if m.id == message_id:
                return i
        return None

    def add_optimistic(
        self,
        text: str,
        user_id: str,
        display_name: str,
        avatar_url: str | None = None,
    ) -> str:
        """Append a not-yet-acknowledged message. Returns its temporary id."""
        temp_id = f"temp-{next(self._temp_ids)}"
        self._messages.append(
            TimelineMessage(
                id=temp_id,
                text=text,
                created_at=datetime.now(UTC),
                user_id=user_id,
                display_name=display_name,
                avatar_url=avatar_url,
                pending=True,
            )
        )
        return temp_id

    def confirm(self, temp_id: str, server_id: str) -> None:
        """The server stored the optimistic message under `server_id`."""
        i = self._index(temp_id)
        if i is None:
            return
        if self._index(server_id) is not None:
            # The realtime insert got here first
            del self._messages[i]
            return
        self._messages[i] = replace(self._messages[i], id=server_id, pending=False)

    def discard(self, temp_id: str) -> None:
        """The send failed: remove the optimistic entry."""
        i = self._index(temp_id)
        if i is not None:
            del self._messages[i]

    def apply_insert(self, message: TimelineMessage) -> bool:
        """
        Add a message pushed by the server. Returns False if it was
        already present.
        """
        if self._index(message.id) is not None:
            return False

        for i, m in enumerate(self._messages):
            if (
                m.pending
                and m.user_id == message.user_id
                and m.text.strip() == message.text.strip()
            ):
                self._messages[i] = replace(message, pending=False)
                return True

        self._messages.append(replace(message, pending=False))
        return True
