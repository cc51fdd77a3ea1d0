"""Matching messages against the named filters of a subscription."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from geyserfilter.config import (
    CommitmentLevel,
    ConfigFilter,
    ConfigFilterAccounts,
    ConfigFilterSlots,
    ConfigFilterTransactions,
    DataSize,
    LamportsCmp,
    Lamports,
    Memcmp,
    TokenAccountState,
)
from geyserfilter.message import (
    MessageAccount,
    MessageBlockMeta,
    MessageEntry,
    MessageSlot,
    MessageTransaction,
    SlotStatus,
)
from geyserfilter.parse import MessageBlock
from geyserfilter.updates import (
    BlocksFilter,
    FilterAccountDataSlices,
    FilteredUpdate,
    UpdateType,
)

_TOKEN_ACCOUNT_LEN = 165
_MULTISIG_LEN = 355
_ACCOUNT_INITIALIZED_INDEX = 108
_ACCOUNT_STATE_UNINITIALIZED = 0
_ACCOUNT_TYPE_ACCOUNT = 2

_COMMITTED_STATUS = {
    CommitmentLevel.PROCESSED: SlotStatus.SLOT_PROCESSED,
    CommitmentLevel.CONFIRMED: SlotStatus.SLOT_CONFIRMED,
    CommitmentLevel.FINALIZED: SlotStatus.SLOT_FINALIZED,
}


def is_token_account(data: bytes) -> bool:
    """Whether ``data`` holds an initialized token account, with or without extensions."""
    data = bytes(data)

    def initialized() -> bool:
        state = (
            data[_ACCOUNT_INITIALIZED_INDEX]
            if len(data) > _ACCOUNT_INITIALIZED_INDEX
            else _ACCOUNT_STATE_UNINITIALIZED
        )
        return state != _ACCOUNT_STATE_UNINITIALIZED

    if len(data) == _TOKEN_ACCOUNT_LEN:
        return initialized()
    return (
        len(data) > _TOKEN_ACCOUNT_LEN
        and len(data) != _MULTISIG_LEN
        and data[_TOKEN_ACCOUNT_LEN] == _ACCOUNT_TYPE_ACCOUNT
        and initialized()
    )


def lamports_match(cmp: LamportsCmp, value: int, lamports: int) -> bool:
    """Whether an account holding ``lamports`` passes the comparison with ``value``."""
    if cmp is LamportsCmp.EQ:
        return lamports == value
    if cmp is LamportsCmp.NE:
        return lamports != value
    if cmp is LamportsCmp.LT:
        return lamports < value
    if cmp is LamportsCmp.GT:
        return lamports > value
    raise ValueError(f"unknown lamports comparison: {cmp!r}")


@dataclass(frozen=True)
class _SlotRule:
    filter_by_commitment: bool
    interslot_updates: bool

    @classmethod
    def from_config(cls, config: ConfigFilterSlots) -> _SlotRule:
        return cls(bool(config.filter_by_commitment), bool(config.interslot_updates))

    def matches(self, status: SlotStatus, commitment: CommitmentLevel) -> bool:
        if self.filter_by_commitment and _COMMITTED_STATUS[commitment] != status:
            return False
        return self.interslot_updates or status in _COMMITTED_STATUS.values()


@dataclass(frozen=True)
class _AccountDataRule:
    memcmp: tuple[tuple[int, bytes], ...]
    datasize: int | None
    token_account_state: bool
    lamports: tuple[tuple[LamportsCmp, int], ...]

    @classmethod
    def from_filters(cls, filters) -> _AccountDataRule:
        memcmp, lamports = [], []
        datasize = None
        token_account_state = False
        for item in filters:
            if isinstance(item, Memcmp):
                memcmp.append((item.offset, bytes(item.data)))
            elif isinstance(item, DataSize):
                datasize = item.size
            elif isinstance(item, TokenAccountState):
                token_account_state = True
            elif isinstance(item, Lamports):
                lamports.append((item.cmp, item.value))
        return cls(tuple(memcmp), datasize, token_account_state, tuple(lamports))

    def matches(self, lamports: int, data: bytes) -> bool:
        if self.datasize is not None and len(data) != self.datasize:
            return False
        if self.token_account_state and not is_token_account(data):
            return False
        if not all(lamports_match(cmp, value, lamports) for cmp, value in self.lamports):
            return False
        return all(
            len(data) >= offset + len(expected) and data[offset : offset + len(expected)] == expected
            for offset, expected in self.memcmp
        )


@dataclass(frozen=True)
class _AccountRule:
    account: frozenset[bytes]
    owner: frozenset[bytes]
    data: _AccountDataRule | None
    nonempty_txn_signature: bool | None

    @classmethod
    def from_config(cls, config: ConfigFilterAccounts) -> _AccountRule:
        return cls(
            account=frozenset(config.account),
            owner=frozenset(config.owner),
            data=_AccountDataRule.from_filters(config.filters) if config.filters else None,
            nonempty_txn_signature=config.nonempty_txn_signature,
        )

    def matches(self, message: MessageAccount) -> bool:
        if self.account and message.pubkey not in self.account:
            return False
        if self.owner and message.owner not in self.owner:
            return False
        if self.data is not None and not self.data.matches(message.lamports, message.data):
            return False
        return (
            self.nonempty_txn_signature is None
            or self.nonempty_txn_signature == message.nonempty_txn_signature()
        )


@dataclass(frozen=True)
class _TransactionRule:
    vote: bool | None
    failed: bool | None
    signature: bytes | None
    account_include: frozenset[bytes]
    account_exclude: frozenset[bytes]
    account_required: frozenset[bytes]

    @classmethod
    def from_config(cls, config: ConfigFilterTransactions) -> _TransactionRule:
        return cls(
            vote=config.vote,
            failed=config.failed,
            signature=config.signature,
            account_include=frozenset(config.account_include),
            account_exclude=frozenset(config.account_exclude),
            account_required=frozenset(config.account_required),
        )

    def matches(self, message: MessageTransaction) -> bool:
        if self.vote is not None and self.vote != message.vote:
            return False
        if self.failed is not None and self.failed != message.failed():
            return False
        if self.signature is not None and self.signature != message.signature:
            return False
        keys = message.account_keys
        if self.account_include and self.account_include.isdisjoint(keys):
            return False
        if self.account_exclude and not self.account_exclude.isdisjoint(keys):
            return False
        return not self.account_required or self.account_required <= keys


def _rules(configs: Mapping[str, Any], build) -> dict[str, Any]:
    return {name: build(config) for name, config in configs.items()}


class Filter:
    """A compiled subscription filter that selects updates for each message."""

    def __init__(self, config: ConfigFilter | None = None) -> None:
        config = config if config is not None else ConfigFilter()
        self._slots = _rules(config.slots, _SlotRule.from_config)
        self._accounts = _rules(config.accounts, _AccountRule.from_config)
        self._data_slices = FilterAccountDataSlices(config.accounts_data_slice)
        self._transactions = _rules(config.transactions, _TransactionRule.from_config)
        self._transactions_status = _rules(
            config.transactions_status, _TransactionRule.from_config
        )
        self._entries = tuple(sorted(config.entries))
        self._blocks_meta = tuple(sorted(config.blocks_meta))
        self._blocks = BlocksFilter(config.blocks)
        self._commitment = (
            config.commitment if config.commitment is not None else CommitmentLevel.PROCESSED
        )

    @property
    def commitment(self) -> CommitmentLevel:
        """Commitment level the subscription asked for."""
        return self._commitment

    @property
    def data_slices(self) -> FilterAccountDataSlices:
        """Account data slices applied to account updates."""
        return self._data_slices

    def get_updates(self, message: Any, commitment: Any) -> list[FilteredUpdate]:
        """Return the updates this subscription receives for ``message``."""
        if not isinstance(commitment, CommitmentLevel):
            commitment = CommitmentLevel.from_int(commitment)
        if isinstance(message, MessageSlot):
            names = [
                name
                for name, rule in self._slots.items()
                if rule.matches(message.status, commitment)
            ]
            return self._single(names, UpdateType.SLOT, message)
        if isinstance(message, MessageAccount):
            names = [name for name, rule in self._accounts.items() if rule.matches(message)]
            return self._single(names, UpdateType.ACCOUNT, message, self._data_slices)
        if isinstance(message, MessageTransaction):
            tx_names = [
                name for name, rule in self._transactions.items() if rule.matches(message)
            ]
            status_names = [
                name
                for name, rule in self._transactions_status.items()
                if rule.matches(message)
            ]
            return self._single(tx_names, UpdateType.TRANSACTION, message) + self._single(
                status_names, UpdateType.TRANSACTION_STATUS, message
            )
        if isinstance(message, MessageEntry):
            return self._single(self._entries, UpdateType.ENTRY, message)
        if isinstance(message, MessageBlockMeta):
            return self._single(self._blocks_meta, UpdateType.BLOCK_META, message)
        if isinstance(message, MessageBlock):
            return list(self._blocks.get_updates(message, self._data_slices))
        raise TypeError(f"not a message: {type(message).__name__}")

    @staticmethod
    def _single(
        names,
        update_type: UpdateType,
        message: Any,
        data_slices: FilterAccountDataSlices | None = None,
    ) -> list[FilteredUpdate]:
        if not names:
            return []
        extra = {} if data_slices is None else {"data_slices": data_slices}
        return [
            FilteredUpdate(filters=tuple(names), update_type=update_type, message=message, **extra)
        ]