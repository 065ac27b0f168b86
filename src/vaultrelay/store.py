"""In-memory vault and message store for the relay.

The store is the only owner of relay state. It tracks vaults, their
participants and pending messages, and decides when a message or vault can
be dropped:

- Full acknowledgement: every current participant has acked a message
- TTL: a message is older than the configured TTL (swept periodically)
- Backlog trimming: a vault keeps at most ``max_messages`` entries
- Nuke: forced removal of a user's footprint across a set of vaults

Concurrency:
    Each vault id maps to a ``_VaultSlot`` that holds the vault record, its
    ordered message map and a ``threading.Lock``. Every operation on a vault
    runs under that vault's lock, so operations on different vaults proceed
    in parallel. The slot index itself is guarded by a separate index lock.

    Lock order is always slot lock -> index lock. A slot removed from the
    index is flagged ``removed``; a caller that was waiting on its lock sees
    the flag and retries against the index, so nothing is ever written into
    a torn-down vault.

Payloads are opaque. The store never inspects or logs blobs.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Literal

from .metrics import timed_operation

logger = logging.getLogger(__name__)

VaultType = Literal["public", "private"]

MAX_MESSAGES_PER_VAULT = 2000
MESSAGE_TTL_MS = 7 * 24 * 60 * 60 * 1000
MAX_BLOB_LENGTH = 1_000_000
MAX_ACK_BATCH = 500
PRIVATE_VAULT_CAPACITY = 2


class VaultFull(Exception):
    """Raised when a non-member tries to join a private vault at capacity."""

    def __init__(self, vault_id: str):
        super().__init__(f"Private vault is full (max {PRIVATE_VAULT_CAPACITY} participants).")
        self.vault_id = vault_id


def wall_clock_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def normalize_vault_type(vault_type: str | None) -> VaultType:
    """Anything other than an explicit "private" is a public vault."""
    return "private" if vault_type == "private" else "public"


@dataclass
class Vault:
    """A named channel and the users currently joined to it."""

    id: str
    type: VaultType
    created_at: int
    participants: set[str] = field(default_factory=set)

    @property
    def max_participants(self) -> float:
        """2 for private vaults, unbounded for public ones."""
        return PRIVATE_VAULT_CAPACITY if self.type == "private" else float("inf")

    @property
    def participant_count(self) -> int:
        return len(self.participants)


@dataclass
class Message:
    """One opaque blob submission."""

    id: str
    vault_id: str
    blob: str
    timestamp: int
    acknowledged_by: set[str] = field(default_factory=set)

    def is_fully_acked(self, participant_count: int) -> bool:
        """True once every current participant has acked (never for empty vaults)."""
        return participant_count > 0 and len(self.acknowledged_by) >= participant_count

    def to_dict(self) -> dict[str, Any]:
        """Client-facing view. Acknowledgement state is never exposed."""
        return {
            "id": self.id,
            "vault_id": self.vault_id,
            "blob": self.blob,
            "timestamp": self.timestamp,
        }


@dataclass
class JoinResult:
    """Outcome of create_or_join."""

    vault_type: VaultType
    participant_count: int


@dataclass
class SweepResult:
    """Counters for one sweep pass."""

    vaults_scanned: int = 0
    messages_removed: int = 0
    vaults_removed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "vaults_scanned": self.vaults_scanned,
            "messages_removed": self.messages_removed,
            "vaults_removed": self.vaults_removed,
        }


@dataclass
class StoreStats:
    """Aggregate view over the live store. Computed on demand."""

    vaults: int = 0
    private_vaults: int = 0
    public_vaults: int = 0
    messages: int = 0
    total_participants: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "vaults": self.vaults,
            "privateVaults": self.private_vaults,
            "publicVaults": self.public_vaults,
            "messages": self.messages,
            "totalParticipants": self.total_participants,
        }


@dataclass
class _VaultSlot:
    """Everything the store keeps for one vault id.

    ``vault`` is None for a mailbox that has received posts but was never
    created or joined. ``messages`` preserves insertion order, which is also
    timestamp order.
    """

    vault_id: str
    vault: Vault | None = None
    messages: dict[str, Message] = field(default_factory=dict)
    last_timestamp: int = 0
    removed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def participant_count(self) -> int:
        return self.vault.participant_count if self.vault is not None else 0

    def is_empty(self) -> bool:
        return not self.messages and self.participant_count == 0


class VaultStore:
    """Thread-safe in-memory store of vaults and pending messages.

    Args:
        max_messages: Backlog cap per vault; oldest entries are dropped past it
        message_ttl_ms: Age after which sweep drops a message
        clock: Returns the current time in epoch milliseconds (injectable for tests)
    """

    def __init__(
        self,
        max_messages: int = MAX_MESSAGES_PER_VAULT,
        message_ttl_ms: int = MESSAGE_TTL_MS,
        clock: Callable[[], int] = wall_clock_ms,
    ) -> None:
        self.max_messages = max_messages
        self.message_ttl_ms = message_ttl_ms
        self._clock = clock
        self._slots: dict[str, _VaultSlot] = {}
        self._lock = threading.Lock()

    # --- Slot management ---

    @contextmanager
    def _locked(self, vault_id: str, create: bool = False) -> Iterator[_VaultSlot | None]:
        """Hold the lock of a live slot for ``vault_id``.

        Yields None when the vault is unknown and ``create`` is False.
        """
        while True:
            with self._lock:
                slot = self._slots.get(vault_id)
                if slot is None:
                    if not create:
                        break
                    slot = _VaultSlot(vault_id)
                    self._slots[vault_id] = slot
            with slot.lock:
                if slot.removed:
                    # Torn down while we waited; look it up again
                    continue
                yield slot
                return
        yield None

    def _teardown(self, slot: _VaultSlot) -> None:
        """Remove a slot from the index. Caller holds ``slot.lock``."""
        with self._lock:
            if self._slots.get(slot.vault_id) is slot:
                del self._slots[slot.vault_id]
        slot.removed = True
        slot.vault = None
        slot.messages.clear()

    def _snapshot_ids(self) -> list[str]:
        with self._lock:
            return list(self._slots)

    def _next_timestamp(self, slot: _VaultSlot) -> int:
        """Store-assigned timestamp, strictly increasing within a vault."""
        timestamp = max(self._clock(), slot.last_timestamp + 1)
        slot.last_timestamp = timestamp
        return timestamp

    # --- Vault lifecycle ---

    @timed_operation("create_or_join")
    def create_or_join(
        self,
        vault_id: str,
        vault_type: str | None = None,
        user_id: str | None = None,
    ) -> JoinResult:
        """Ensure a vault exists and optionally add ``user_id`` to it.

        The first caller fixes the vault type; later type arguments are
        ignored. Joining is idempotent for existing members.

        Raises:
            VaultFull: joining a full private vault as a non-member
        """
        with self._locked(vault_id, create=True) as slot:
            assert slot is not None
            if slot.vault is None:
                slot.vault = Vault(
                    id=vault_id,
                    type=normalize_vault_type(vault_type),
                    created_at=self._clock(),
                )
            vault = slot.vault

            if user_id is not None:
                if (
                    vault.participant_count >= vault.max_participants
                    and user_id not in vault.participants
                ):
                    raise VaultFull(vault_id)
                vault.participants.add(user_id)

            return JoinResult(vault_type=vault.type, participant_count=vault.participant_count)

    def leave(self, vault_id: str, user_id: str) -> None:
        """Placeholder: explicit leave never removes a participant.

        Clients signal departure by no longer acknowledging. Participants
        are only removed by nuke_user or when the whole vault is torn down.
        """
        return None

    @timed_operation("get_participant_count")
    def get_participant_count(self, vault_id: str) -> int:
        with self._locked(vault_id) as slot:
            return slot.participant_count if slot is not None else 0

    def get_vault(self, vault_id: str) -> Vault | None:
        """Return a copy of the vault record, or None."""
        with self._locked(vault_id) as slot:
            if slot is None or slot.vault is None:
                return None
            vault = slot.vault
            return Vault(
                id=vault.id,
                type=vault.type,
                created_at=vault.created_at,
                participants=set(vault.participants),
            )

    # --- Message lifecycle ---

    @timed_operation("post_message")
    def post_message(self, message_id: str, vault_id: str, blob: str) -> int:
        """Append a message and return its timestamp.

        Re-posting an existing id is a no-op that returns the original
        timestamp. Posting does not require any participants.
        """
        with self._locked(vault_id, create=True) as slot:
            assert slot is not None
            existing = slot.messages.get(message_id)
            if existing is not None:
                return existing.timestamp

            timestamp = self._next_timestamp(slot)
            slot.messages[message_id] = Message(
                id=message_id,
                vault_id=vault_id,
                blob=blob,
                timestamp=timestamp,
            )

            overflow = len(slot.messages) - self.max_messages
            if overflow > 0:
                for old_id in list(slot.messages)[:overflow]:
                    del slot.messages[old_id]
                logger.debug(f"Trimmed {overflow} message(s) from vault backlog")

            return timestamp

    @timed_operation("get_messages")
    def get_messages(self, vault_id: str, since: int | None = 0) -> tuple[list[dict[str, Any]], int]:
        """Return messages newer than ``since`` (oldest first) and the participant count."""
        cursor = since if since is not None and since > 0 else 0
        with self._locked(vault_id) as slot:
            if slot is None:
                return [], 0
            data = [m.to_dict() for m in slot.messages.values() if m.timestamp > cursor]
            return data, slot.participant_count

    @timed_operation("ack_messages")
    def ack_messages(self, vault_id: str, message_ids: Iterable[Any], user_id: str) -> int:
        """Record ``user_id`` as having consumed the named messages.

        Messages acked by every current participant are deleted. Unknown
        ids are ignored, and only the first MAX_ACK_BATCH ids of one call
        are processed.

        Returns:
            Number of messages deleted
        """
        message_ids = list(islice(message_ids, MAX_ACK_BATCH))

        with self._locked(vault_id) as slot:
            if slot is None:
                return 0

            participant_count = slot.participant_count
            to_delete: set[str] = set()
            for message_id in message_ids:
                if not isinstance(message_id, str):
                    continue
                message = slot.messages.get(message_id)
                if message is None:
                    continue
                message.acknowledged_by.add(user_id)
                if message.is_fully_acked(participant_count):
                    to_delete.add(message_id)

            for message_id in to_delete:
                del slot.messages[message_id]

            return len(to_delete)

    # --- Forced removal ---

    @timed_operation("nuke_user")
    def nuke_user(self, vault_ids: Iterable[Any], user_id: str) -> int:
        """Remove ``user_id``'s footprint from each listed vault.

        Private vaults are destroyed outright. In public vaults the user
        acks everything pending and is removed; the vault is destroyed if
        nobody is left. Never raises for unknown vaults.

        Returns:
            Number of vaults destroyed
        """
        destroyed = 0
        for vault_id in vault_ids:
            if not isinstance(vault_id, str):
                continue
            with self._locked(vault_id) as slot:
                if slot is None or slot.vault is None:
                    continue
                vault = slot.vault

                if vault.type == "private":
                    self._teardown(slot)
                    destroyed += 1
                    continue

                # Stricter than ack_messages: a sole participant leaving does
                # not count as delivering to everyone.
                participant_count = vault.participant_count
                to_delete = []
                for message in slot.messages.values():
                    message.acknowledged_by.add(user_id)
                    if participant_count > 1 and len(message.acknowledged_by) >= participant_count:
                        to_delete.append(message.id)
                for message_id in to_delete:
                    del slot.messages[message_id]

                vault.participants.discard(user_id)
                if vault.participant_count == 0:
                    self._teardown(slot)
                    destroyed += 1

        if destroyed:
            logger.info(f"Nuke destroyed {destroyed} vault(s)")
        return destroyed

    # --- Eviction ---

    @timed_operation("sweep")
    def sweep(self) -> SweepResult:
        """Drop expired and fully-acked messages, then empty orphaned vaults.

        Holds one vault lock at a time. Vault ids created after the index
        snapshot are picked up by the next pass.
        """
        result = SweepResult()
        cutoff = self._clock() - self.message_ttl_ms

        for vault_id in self._snapshot_ids():
            with self._locked(vault_id) as slot:
                if slot is None:
                    continue
                result.vaults_scanned += 1
                participant_count = slot.participant_count

                stale = [
                    m.id
                    for m in slot.messages.values()
                    if m.timestamp < cutoff or m.is_fully_acked(participant_count)
                ]
                for message_id in stale:
                    del slot.messages[message_id]
                result.messages_removed += len(stale)

                if slot.is_empty():
                    self._teardown(slot)
                    result.vaults_removed += 1

        return result

    # --- Introspection ---

    def stats(self) -> StoreStats:
        """Aggregate counts over the live store."""
        stats = StoreStats()
        for vault_id in self._snapshot_ids():
            with self._locked(vault_id) as slot:
                if slot is None:
                    continue
                stats.messages += len(slot.messages)
                if slot.vault is None:
                    continue
                stats.vaults += 1
                stats.total_participants += slot.vault.participant_count
                if slot.vault.type == "private":
                    stats.private_vaults += 1
                else:
                    stats.public_vaults += 1
        return stats

    def clear(self) -> None:
        """Drop all state (equivalent to a restart)."""
        for vault_id in self._snapshot_ids():
            with self._locked(vault_id) as slot:
                if slot is not None:
                    self._teardown(slot)
