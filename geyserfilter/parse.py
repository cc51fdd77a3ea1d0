"""Turning decoded subscribe updates into messages, and assembling blocks."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from geyserfilter.message import (
    Encoding,
    MessageAccount,
    MessageBlockMeta,
    MessageEntry,
    MessageParseError,
    MessageSlot,
    MessageTransaction,
    Timestamp,
    gen_account_keys,
)

_ONEOF = (
    "account",
    "slot",
    "transaction",
    "transaction_status",
    "block",
    "ping",
    "pong",
    "block_meta",
    "entry",
)


def _not_defined(name: str) -> MessageParseError:
    return MessageParseError(f"Field `{name}` should be defined")


def _invalid_update(name: str) -> MessageParseError:
    return MessageParseError(f"Invalid update: {name}")


def _encoded_len(value: Mapping[str, Any]) -> int:
    return int(value.get("encoded_len", 0))


def _timestamp(value: Any) -> Timestamp:
    if value is None:
        raise _not_defined("created_at")
    if isinstance(value, Timestamp):
        return value
    if isinstance(value, Mapping):
        return Timestamp(int(value.get("seconds", 0)), int(value.get("nanos", 0)))
    raise MessageParseError("Invalid created_at value")


def _block_height(block_meta: Mapping[str, Any]) -> int:
    height = block_meta.get("block_height")
    if height is None:
        raise _not_defined("block_height")
    if isinstance(height, Mapping):
        return int(height.get("block_height", 0))
    return int(height)


@dataclass(frozen=True)
class MessageBlock:
    """A whole block assembled from its parts, all of one encoding."""

    accounts: list[MessageAccount] = field(default_factory=list)
    transactions: list[MessageTransaction] = field(default_factory=list)
    entries: list[MessageEntry] = field(default_factory=list)
    block_meta: MessageBlockMeta | None = None
    created_at: Timestamp = field(default_factory=Timestamp)
    encoding: Encoding = Encoding.PROST

    def slot(self) -> int:
        """Slot of the block, taken from its metadata."""
        if self.block_meta is None:
            raise _not_defined("block_meta")
        return self.block_meta.slot

    def size(self) -> int:
        """Approximate memory held by the block and all its parts, in bytes."""
        parts = sum(
            part.size() for part in (*self.accounts, *self.transactions, *self.entries)
        )
        meta = self.block_meta.size() if self.block_meta is not None else 0
        return parts + meta


Message = Union[
    MessageSlot, MessageAccount, MessageTransaction, MessageEntry, MessageBlockMeta, MessageBlock
]


def _created_at_parts(created_at: Any) -> tuple[Timestamp, Encoding]:
    if isinstance(created_at, tuple):
        timestamp, encoding = created_at
        return _timestamp(timestamp), Encoding(encoding)
    try:
        return created_at.created_at, created_at.encoding
    except AttributeError:
        raise MessageParseError(
            "created_at must be a (timestamp, encoding) pair or a message"
        ) from None


def create_block(
    accounts: Sequence[MessageAccount],
    transactions: Sequence[MessageTransaction],
    entries: Sequence[MessageEntry],
    block_meta: MessageBlockMeta,
    created_at: Any,
) -> MessageBlock:
    """Assemble a block; every part must share the encoding of ``created_at``.

    ``created_at`` is either a ``(Timestamp, Encoding)`` pair or any message,
    whose timestamp and encoding are then used.
    """
    timestamp, encoding = _created_at_parts(created_at)
    for part in (block_meta, *accounts, *transactions, *entries):
        if part.encoding is not encoding:
            raise MessageParseError("Incompatible encoding")
    return MessageBlock(
        accounts=list(accounts),
        transactions=list(transactions),
        entries=list(entries),
        block_meta=block_meta,
        created_at=timestamp,
        encoding=encoding,
    )


def _account(
    info: Mapping[str, Any],
    slot: int,
    is_startup: bool,
    created_at: Timestamp,
    raw_size: int,
    in_block: bool,
) -> MessageAccount:
    return MessageAccount(
        pubkey=info.get("pubkey", b""),
        owner=info.get("owner", b""),
        lamports=int(info.get("lamports", 0)),
        executable=bool(info.get("executable", False)),
        rent_epoch=int(info.get("rent_epoch", 0)),
        data=info.get("data", b""),
        txn_signature=info.get("txn_signature"),
        write_version=int(info.get("write_version", 0)),
        slot=slot,
        is_startup=is_startup,
        created_at=created_at,
        raw_size=raw_size,
        in_block=in_block,
    )


def _transaction(
    info: Mapping[str, Any], slot: int, created_at: Timestamp, encoded_len: int
) -> MessageTransaction:
    meta = info.get("meta")
    if meta is None:
        raise _not_defined("meta")
    account_keys = gen_account_keys(info, meta)
    return MessageTransaction(
        signature=info.get("signature", b""),
        error=meta.get("err"),
        account_keys=frozenset(account_keys),
        info=info,
        slot=slot,
        created_at=created_at,
        raw_size=encoded_len,
    )


def _block(block: Mapping[str, Any], created_at: Timestamp, encoded_len: int) -> MessageBlock:
    slot = int(block.get("slot", 0))
    accounts = [
        _account(info, slot, False, created_at, _encoded_len(info), in_block=True)
        for info in block.get("accounts", ())
    ]
    # Every transaction of a block is sized against the whole update.
    transactions = [
        _transaction(info, slot, created_at, encoded_len)
        for info in block.get("transactions", ())
    ]
    entries = [
        MessageEntry(
            slot=int(entry.get("slot", 0)),
            index=int(entry.get("index", 0)),
            executed_transaction_count=int(entry.get("executed_transaction_count", 0)),
            created_at=created_at,
            raw_size=_encoded_len(entry),
            entry=entry,
        )
        for entry in block.get("entries", ())
    ]
    meta_fields = (
        "slot",
        "blockhash",
        "rewards",
        "block_time",
        "block_height",
        "parent_slot",
        "parent_blockhash",
        "executed_transaction_count",
        "entries_count",
    )
    block_meta = {name: block[name] for name in meta_fields if name in block}
    meta = MessageBlockMeta(
        block_meta=block_meta,
        block_height=_block_height(block_meta),
        created_at=created_at,
        raw_size=_encoded_len(block),
    )
    return MessageBlock(
        accounts=accounts,
        transactions=transactions,
        entries=entries,
        block_meta=meta,
        created_at=created_at,
        encoding=Encoding.PROST,
    )


def parse_update(update: Mapping[str, Any]) -> Message:
    """Turn a fully decoded subscribe update into a message.

    The update is a mapping holding ``created_at`` and exactly one update
    variant; an ``encoded_len`` key gives the size of the encoded update
    (for a block, of its metadata; for block parts, of each part).
    """
    created_at = _timestamp(update.get("created_at"))
    present = [name for name in _ONEOF if update.get(name) is not None]
    if not present:
        raise _not_defined("update_oneof")
    if len(present) > 1:
        raise _invalid_update("more than one update variant")
    (kind,) = present
    value = update[kind]
    encoded_len = _encoded_len(update)

    if kind == "slot":
        return MessageSlot(
            slot=int(value.get("slot", 0)),
            parent=value.get("parent"),
            status=value.get("status", 0),
            dead_error=value.get("dead_error"),
            created_at=created_at,
            raw_size=encoded_len,
        )
    if kind == "account":
        info = value.get("account")
        if info is None:
            raise _not_defined("account")
        return _account(
            info,
            int(value.get("slot", 0)),
            bool(value.get("is_startup", False)),
            created_at,
            encoded_len,
            in_block=False,
        )
    if kind == "transaction":
        info = value.get("transaction")
        if info is None:
            raise _not_defined("transaction")
        return _transaction(info, int(value.get("slot", 0)), created_at, encoded_len)
    if kind == "entry":
        return MessageEntry(
            slot=int(value.get("slot", 0)),
            index=int(value.get("index", 0)),
            executed_transaction_count=int(value.get("executed_transaction_count", 0)),
            created_at=created_at,
            raw_size=encoded_len,
            entry=value,
        )
    if kind == "block_meta":
        return MessageBlockMeta(
            block_meta=value,
            block_height=_block_height(value),
            created_at=created_at,
            raw_size=encoded_len,
        )
    if kind == "block":
        return _block(value, created_at, encoded_len)
    names = {"transaction_status": "TransactionStatus", "ping": "Ping", "pong": "Pong"}
    raise _invalid_update(names[kind])


def message_slot(message: Message) -> int:
    """Slot that any kind of message belongs to."""
    if isinstance(message, MessageBlock):
        return message.slot()
    return message.slot