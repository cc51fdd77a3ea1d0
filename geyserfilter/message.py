"""Parsed update messages and the sizes they account for in memory."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from geyserfilter.config import PUBKEY_BYTES, SIGNATURE_BYTES

_U64_MOD = 2**64


class MessageParseError(ValueError):
    """An update could not be turned into a message."""


def _not_defined(name: str) -> MessageParseError:
    return MessageParseError(f"Field `{name}` should be defined")


def _pubkey(value: Any) -> bytes:
    raw = bytes(value)
    if len(raw) != PUBKEY_BYTES:
        raise MessageParseError("Invalid pubkey length")
    return raw


def _signature(value: Any) -> bytes:
    raw = bytes(value)
    if len(raw) != SIGNATURE_BYTES:
        raise MessageParseError("Invalid signature length")
    return raw


class Encoding(Enum):
    """How a message was parsed."""

    LIMITED = "limited"
    """Only the fields needed for filtering were extracted."""
    PROST = "prost"
    """The whole update was decoded."""


class SlotStatus(IntEnum):
    """Status of a slot, with its wire value."""

    SLOT_PROCESSED = 0
    SLOT_CONFIRMED = 1
    SLOT_FINALIZED = 2
    SLOT_FIRST_SHRED_RECEIVED = 3
    SLOT_COMPLETED = 4
    SLOT_CREATED_BANK = 5
    SLOT_DEAD = 6


@dataclass(frozen=True)
class Timestamp:
    """A point in time as seconds and nanoseconds since the Unix epoch."""

    seconds: int = 0
    nanos: int = 0

    def as_millis(self) -> int:
        """Milliseconds since the epoch, truncating partial milliseconds."""
        nanos_millis = abs(self.nanos) // 1_000_000
        if self.nanos < 0:
            nanos_millis = -nanos_millis
        return (self.seconds * 1_000 + nanos_millis) % _U64_MOD


@dataclass(frozen=True)
class MessageSlot:
    """A slot status change."""

    slot: int
    parent: int | None
    status: SlotStatus
    dead_error: str | None
    created_at: Timestamp
    encoding: Encoding = Encoding.PROST
    raw_size: int = 0

    def __post_init__(self) -> None:
        try:
            status = SlotStatus(self.status)
        except ValueError:
            raise MessageParseError(f"Invalid enum value: {self.status}") from None
        object.__setattr__(self, "status", status)

    def size(self) -> int:
        """Approximate memory held by this message, in bytes."""
        if self.encoding is Encoding.LIMITED:
            return self.raw_size + 64
        return self.raw_size


@dataclass(frozen=True)
class MessageAccount:
    """An account update."""

    pubkey: bytes
    owner: bytes
    lamports: int
    executable: bool
    rent_epoch: int
    data: bytes
    txn_signature: bytes | None
    write_version: int
    slot: int
    is_startup: bool
    created_at: Timestamp
    encoding: Encoding = Encoding.PROST
    raw_size: int = 0
    in_block: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "pubkey", _pubkey(self.pubkey))
        object.__setattr__(self, "owner", _pubkey(self.owner))
        object.__setattr__(self, "data", bytes(self.data))
        if self.txn_signature is not None:
            object.__setattr__(self, "txn_signature", bytes(self.txn_signature))

    def nonempty_txn_signature(self) -> bool:
        """Whether the update carries the signature of the transaction that caused it."""
        return self.txn_signature is not None

    def size(self) -> int:
        """Approximate memory held by this message, in bytes."""
        if self.encoding is Encoding.LIMITED:
            return self.raw_size + PUBKEY_BYTES * 2 + 86
        overhead = 32 if self.in_block else 20
        return PUBKEY_BYTES + PUBKEY_BYTES + self.raw_size + overhead


@dataclass(frozen=True)
class MessageTransaction:
    """A transaction together with its status meta."""

    signature: bytes
    error: Any
    account_keys: frozenset[bytes]
    info: Mapping[str, Any]
    slot: int
    created_at: Timestamp
    encoding: Encoding = Encoding.PROST
    raw_size: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "signature", _signature(self.signature))
        object.__setattr__(self, "account_keys", frozenset(self.account_keys))

    @property
    def vote(self) -> bool:
        return bool(self.info.get("is_vote", False))

    @property
    def index(self) -> int:
        return int(self.info.get("index", 0))

    def failed(self) -> bool:
        """Whether the transaction ended with an error."""
        return self.error is not None

    def size(self) -> int:
        """Approximate memory held by this message, in bytes."""
        keys = len(self.account_keys) * PUBKEY_BYTES
        if self.encoding is Encoding.LIMITED:
            return self.raw_size * 2 + keys
        return self.raw_size + SIGNATURE_BYTES + keys


@dataclass(frozen=True)
class MessageEntry:
    """A ledger entry."""

    slot: int
    index: int
    executed_transaction_count: int
    created_at: Timestamp
    encoding: Encoding = Encoding.PROST
    raw_size: int = 0
    entry: Mapping[str, Any] = field(default_factory=dict)

    def size(self) -> int:
        """Approximate memory held by this message, in bytes."""
        if self.encoding is Encoding.LIMITED:
            return self.raw_size + 52
        return self.raw_size


@dataclass(frozen=True)
class MessageBlockMeta:
    """Metadata of a block."""

    block_meta: Mapping[str, Any]
    block_height: int
    created_at: Timestamp
    encoding: Encoding = Encoding.PROST
    raw_size: int = 0

    @property
    def slot(self) -> int:
        return int(self.block_meta.get("slot", 0))

    @property
    def blockhash(self) -> str:
        return str(self.block_meta.get("blockhash", ""))

    @property
    def executed_transaction_count(self) -> int:
        return int(self.block_meta.get("executed_transaction_count", 0))

    @property
    def entries_count(self) -> int:
        return int(self.block_meta.get("entries_count", 0))

    def size(self) -> int:
        """Approximate memory held by this message, in bytes."""
        if self.encoding is Encoding.LIMITED:
            return self.raw_size * 2
        return self.raw_size


def _keys(values: Iterable[Any]) -> set[bytes]:
    return {_pubkey(value) for value in values}


def gen_account_keys(transaction: Mapping[str, Any], meta: Mapping[str, Any]) -> set[bytes]:
    """Collect the static and dynamically loaded account keys of a transaction."""
    inner = transaction.get("transaction")
    if inner is None:
        raise _not_defined("transaction")
    keys: set[bytes] = set()
    message = inner.get("message")
    if message is not None:
        keys |= _keys(message.get("account_keys", ()))
    keys |= _keys(meta.get("loaded_writable_addresses", ()))
    keys |= _keys(meta.get("loaded_readonly_addresses", ()))
    return keys