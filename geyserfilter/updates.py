"""Filtered updates: what a subscription receives for a message, and block selection."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from geyserfilter.config import ConfigFilterAccountsDataSlice, ConfigFilterBlocks
from geyserfilter.message import (
    MessageAccount,
    MessageBlockMeta,
    MessageEntry,
    MessageSlot,
    MessageTransaction,
)
from geyserfilter.parse import MessageBlock


class FilterAccountDataSlices:
    """Byte ranges of account data that a subscription wants to receive."""

    __slots__ = ("_ranges",)

    def __init__(self, slices: Iterable[ConfigFilterAccountsDataSlice] = ()) -> None:
        self._ranges = tuple(
            (item.offset, item.offset + item.length) for item in slices
        )

    @property
    def ranges(self) -> tuple[tuple[int, int], ...]:
        """The ``(start, end)`` ranges, in configuration order."""
        return self._ranges

    def is_empty(self) -> bool:
        """True when no slices are configured and data is sent whole."""
        return not self._ranges

    def get_slice(self, source: bytes) -> bytes:
        """Cut the configured ranges out of ``source``.

        With no ranges the data is returned whole. With one range, data too
        short to hold it yields empty bytes. With several, the ranges that fit
        are joined in order and the ones that do not are left out.
        """
        source = bytes(source)
        if not self._ranges:
            return source
        if len(self._ranges) == 1:
            ((start, end),) = self._ranges
            return source[start:end] if len(source) >= end else b""
        return b"".join(
            source[start:end] for start, end in self._ranges if len(source) >= end
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FilterAccountDataSlices):
            return NotImplemented
        return self._ranges == other._ranges

    def __hash__(self) -> int:
        return hash(self._ranges)

    def __repr__(self) -> str:
        return f"FilterAccountDataSlices({list(self._ranges)!r})"


_EMPTY_SLICES = FilterAccountDataSlices()


class UpdateType(Enum):
    """Kind of update sent to a subscriber."""

    SLOT = "slot"
    ACCOUNT = "account"
    TRANSACTION = "transaction"
    TRANSACTION_STATUS = "transaction_status"
    ENTRY = "entry"
    BLOCK_META = "block_meta"
    BLOCK = "block"


@dataclass(frozen=True)
class FilteredUpdate:
    """A message matched by one or more named filters.

    For blocks, ``accounts`` and ``transactions`` hold the indices of the
    selected parts and ``entries`` tells whether entries are included.
    """

    filters: tuple[str, ...]
    update_type: UpdateType
    message: Any
    data_slices: FilterAccountDataSlices = field(default=_EMPTY_SLICES)
    accounts: tuple[int, ...] = ()
    transactions: tuple[int, ...] = ()
    entries: bool = False


@dataclass(frozen=True)
class _BlockRule:
    account_include: frozenset[bytes]
    include_transactions: bool | None
    include_accounts: bool | None
    include_entries: bool | None


class BlocksFilter:
    """Named block filters selecting accounts, transactions and entries."""

    def __init__(self, configs: Mapping[str, ConfigFilterBlocks] | None = None) -> None:
        self._rules = {
            name: _BlockRule(
                account_include=frozenset(config.account_include),
                include_transactions=config.include_transactions,
                include_accounts=config.include_accounts,
                include_entries=config.include_entries,
            )
            for name, config in (configs or {}).items()
        }

    def __len__(self) -> int:
        return len(self._rules)

    def get_updates(
        self, block: MessageBlock, data_slices: FilterAccountDataSlices
    ) -> Iterator[FilteredUpdate]:
        """Yield one update per named filter, each with its own selection."""
        for name, rule in self._rules.items():
            include = rule.account_include
            if rule.include_accounts is True:
                accounts = tuple(
                    index
                    for index, account in enumerate(block.accounts)
                    if not include or account.pubkey in include
                )
            else:
                accounts = ()
            if rule.include_transactions in (None, True):
                transactions = tuple(
                    index
                    for index, transaction in enumerate(block.transactions)
                    if not include or not include.isdisjoint(transaction.account_keys)
                )
            else:
                transactions = ()
            yield FilteredUpdate(
                filters=(name,),
                update_type=UpdateType.BLOCK,
                message=block,
                data_slices=data_slices,
                accounts=accounts,
                transactions=transactions,
                entries=rule.include_entries is True,
            )


def full_update(message: Any) -> FilteredUpdate:
    """Wrap a message as an unfiltered update carrying everything it holds."""
    if isinstance(message, MessageBlock):
        return FilteredUpdate(
            filters=(),
            update_type=UpdateType.BLOCK,
            message=message,
            accounts=tuple(range(len(message.accounts))),
            transactions=tuple(range(len(message.transactions))),
            entries=True,
        )
    kinds = (
        (MessageSlot, UpdateType.SLOT),
        (MessageAccount, UpdateType.ACCOUNT),
        (MessageTransaction, UpdateType.TRANSACTION),
        (MessageEntry, UpdateType.ENTRY),
        (MessageBlockMeta, UpdateType.BLOCK_META),
    )
    for cls, update_type in kinds:
        if isinstance(message, cls):
            return FilteredUpdate(filters=(), update_type=update_type, message=message)
    raise TypeError(f"not a message: {type(message).__name__}")