"""Limits that a subscription filter configuration must respect."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable

from geyserfilter.config import (
    MAX_DATA_SIZE,
    MAX_FILTERS,
    ConfigFilter,
    ConfigFilterAccounts,
    ConfigFilterAccountsDataSlice,
    ConfigFilterBlocks,
    ConfigFilterError,
    ConfigFilterSlots,
    ConfigFilterTransactions,
    ConfigLimitsError,
    DataSize,
    Memcmp,
    pubkey_decode,
    pubkey_encode,
)

UNLIMITED = 2**64 - 1


# ---------------------------------------------------------------------------
# checks shared by every stream


def _check_names_max(names: Iterable[str], max_len: int) -> None:
    for name in names:
        if len(name.encode()) > max_len:
            raise ConfigLimitsError(f"Filter name exceeds limit, max {max_len}")


def _check_max(count: int, limit: int) -> None:
    if count > limit:
        raise ConfigLimitsError(
            f"Max amount of filters/data_slices reached, only {limit} allowed"
        )


def _check_any(is_empty: bool, any_allowed: bool) -> None:
    if is_empty and not any_allowed:
        raise ConfigLimitsError(
            "Subscribe on full stream with `any` is not allowed, at least one filter required"
        )


def _check_pubkey_max(count: int, limit: int) -> None:
    if count > limit:
        raise ConfigLimitsError(f"Max amount of Pubkeys is reached, only {limit} allowed")


def _check_pubkeys_reject(pubkeys: Iterable[bytes], rejected: set[bytes]) -> None:
    for pubkey in pubkeys:
        if pubkey in rejected:
            raise ConfigLimitsError(f"Pubkey {pubkey_encode(pubkey)} in filters is not allowed")


# ---------------------------------------------------------------------------
# configuration parsing helpers


def _usize(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= UNLIMITED:
        raise ConfigFilterError(f"invalid value for `{name}`: expected an unsigned integer")
    return value


def _num_str(value: Any, name: str) -> int:
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ConfigFilterError(
                f"invalid value for `{name}`: expected a number or numeric string"
            ) from None
    return _usize(value, name)


def _bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigFilterError(f"invalid type for `{name}`: expected a boolean")
    return value


def _pubkey_set(value: Any, name: str) -> set[bytes]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ConfigFilterError(f"invalid type for `{name}`: expected a list of pubkeys")
    return {pubkey_decode(item) for item in value}


def _build(cls, data: Any, what: str, parsers: Mapping[str, Callable[[Any, str], Any]]):
    if not isinstance(data, Mapping):
        raise ConfigFilterError(f"invalid type for `{what}`: expected a map")
    unknown = [key for key in data if key not in parsers]
    if unknown:
        raise ConfigFilterError(f"unknown field `{unknown[0]}` in {what}")
    return cls(**{key: parsers[key](value, key) for key, value in data.items()})


# ---------------------------------------------------------------------------
# per-stream limits


@dataclass
class ConfigLimitsSlots:
    """Limits for slot filters."""

    max: int = UNLIMITED

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigLimitsSlots:
        return _build(cls, data, "slots limits", {"max": _num_str})

    def check_filter(self, name_max: int, filters: Mapping[str, ConfigFilterSlots]) -> None:
        """Raise ConfigLimitsError if the slot filters break these limits."""
        _check_names_max(filters.keys(), name_max)
        _check_max(len(filters), self.max)


@dataclass
class ConfigLimitsAccounts:
    """Limits for account filters and account data slices."""

    max: int = UNLIMITED
    any: bool = True
    account_max: int = UNLIMITED
    account_reject: set[bytes] = field(default_factory=set)
    owner_max: int = UNLIMITED
    owner_reject: set[bytes] = field(default_factory=set)
    data_slice_max: int = UNLIMITED

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigLimitsAccounts:
        return _build(
            cls,
            data,
            "accounts limits",
            {
                "max": _usize,
                "any": _bool,
                "account_max": _usize,
                "account_reject": _pubkey_set,
                "owner_max": _usize,
                "owner_reject": _pubkey_set,
                "data_slice_max": _usize,
            },
        )

    def check_filter(
        self,
        name_max: int,
        filters: Mapping[str, ConfigFilterAccounts],
        data_slices: Sequence[ConfigFilterAccountsDataSlice],
    ) -> None:
        """Raise ConfigLimitsError if the account filters or slices break these limits."""
        _check_names_max(filters.keys(), name_max)
        _check_max(len(filters), self.max)

        for account_filter in filters.values():
            _check_any(not account_filter.account and not account_filter.owner, self.any)
            _check_pubkey_max(len(account_filter.account), self.account_max)
            _check_pubkey_max(len(account_filter.owner), self.owner_max)
            _check_pubkeys_reject(account_filter.account, self.account_reject)
            _check_pubkeys_reject(account_filter.owner, self.owner_reject)

            if len(account_filter.filters) > MAX_FILTERS:
                raise ConfigLimitsError(f"Too much filters provided; max: {MAX_FILTERS}")
            datasize_defined = False
            for item in account_filter.filters:
                if isinstance(item, Memcmp):
                    if len(item.data) > MAX_DATA_SIZE:
                        raise ConfigLimitsError(
                            f"Filter data is too large, max size: {MAX_DATA_SIZE}"
                        )
                elif isinstance(item, DataSize):
                    if datasize_defined:
                        raise ConfigLimitsError("Datasize used more than once")
                    datasize_defined = True

        _check_max(len(data_slices), self.data_slice_max)
        for index, current in enumerate(data_slices):
            if any(current.offset > later.offset for later in data_slices[index + 1 :]):
                raise ConfigLimitsError("Failed to create filter: data slices out of order")
            if any(
                current.offset < earlier.offset + earlier.length
                for earlier in data_slices[:index]
            ):
                raise ConfigLimitsError("Failed to create filter: data slices overlapped")


@dataclass
class ConfigLimitsTransactions:
    """Limits for transaction and transaction status filters."""

    max: int = UNLIMITED
    any: bool = True
    account_include_max: int = UNLIMITED
    account_include_reject: set[bytes] = field(default_factory=set)
    account_exclude_max: int = UNLIMITED
    account_required_max: int = UNLIMITED

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigLimitsTransactions:
        return _build(
            cls,
            data,
            "transactions limits",
            {
                "max": _num_str,
                "any": _bool,
                "account_include_max": _num_str,
                "account_include_reject": _pubkey_set,
                "account_exclude_max": _num_str,
                "account_required_max": _num_str,
            },
        )

    def check_filter(
        self, name_max: int, filters: Mapping[str, ConfigFilterTransactions]
    ) -> None:
        """Raise ConfigLimitsError if the transaction filters break these limits."""
        _check_names_max(filters.keys(), name_max)
        _check_max(len(filters), self.max)

        for tx_filter in filters.values():
            _check_any(
                tx_filter.vote is None
                and tx_filter.failed is None
                and not tx_filter.account_include
                and not tx_filter.account_exclude
                and not tx_filter.account_required,
                self.any,
            )
            _check_pubkey_max(len(tx_filter.account_include), self.account_include_max)
            _check_pubkey_max(len(tx_filter.account_exclude), self.account_exclude_max)
            _check_pubkey_max(len(tx_filter.account_required), self.account_required_max)
            _check_pubkeys_reject(tx_filter.account_include, self.account_include_reject)


@dataclass
class ConfigLimitsEntries:
    """Limits for entry filters."""

    max: int = UNLIMITED

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigLimitsEntries:
        return _build(cls, data, "entries limits", {"max": _num_str})

    def check_filter(self, name_max: int, filters: Iterable[str]) -> None:
        """Raise ConfigLimitsError if the entry filters break these limits."""
        names = list(filters)
        _check_names_max(names, name_max)
        _check_max(len(names), self.max)


@dataclass
class ConfigLimitsBlocksMeta:
    """Limits for block meta filters."""

    max: int = UNLIMITED

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigLimitsBlocksMeta:
        return _build(cls, data, "blocks_meta limits", {"max": _num_str})

    def check_filter(self, name_max: int, filters: Iterable[str]) -> None:
        """Raise ConfigLimitsError if the block meta filters break these limits."""
        names = list(filters)
        _check_names_max(names, name_max)
        _check_max(len(names), self.max)


@dataclass
class ConfigLimitsBlocks:
    """Limits for block filters."""

    max: int = UNLIMITED
    account_include_max: int = UNLIMITED
    account_include_any: bool = True
    account_include_reject: set[bytes] = field(default_factory=set)
    include_transactions: bool = True
    include_accounts: bool = True
    include_entries: bool = True

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigLimitsBlocks:
        return _build(
            cls,
            data,
            "blocks limits",
            {
                "max": _num_str,
                "account_include_max": _num_str,
                "account_include_any": _bool,
                "account_include_reject": _pubkey_set,
                "include_transactions": _bool,
                "include_accounts": _bool,
                "include_entries": _bool,
            },
        )

    def check_filter(self, name_max: int, filters: Mapping[str, ConfigFilterBlocks]) -> None:
        """Raise ConfigLimitsError if the block filters break these limits."""
        _check_names_max(filters.keys(), name_max)
        _check_max(len(filters), self.max)

        for block_filter in filters.values():
            _check_any(not block_filter.account_include, self.account_include_any)
            _check_pubkey_max(len(block_filter.account_include), self.account_include_max)
            if not (block_filter.include_transactions is False or self.include_transactions):
                raise ConfigLimitsError("`include_transactions` is not allowed")
            if not (not block_filter.include_accounts or self.include_accounts):
                raise ConfigLimitsError("`include_accounts` is not allowed")
            # Entries are gated by the accounts switch, as the original limits do.
            if not (not block_filter.include_entries or self.include_accounts):
                raise ConfigLimitsError("`include_entries` is not allowed")
            _check_pubkeys_reject(block_filter.account_include, self.account_include_reject)


# ---------------------------------------------------------------------------
# all limits together


@dataclass
class ConfigLimits:
    """Limits for every stream of a subscription."""

    name_max: int = 128
    slots: ConfigLimitsSlots = field(default_factory=ConfigLimitsSlots)
    accounts: ConfigLimitsAccounts = field(default_factory=ConfigLimitsAccounts)
    transactions: ConfigLimitsTransactions = field(default_factory=ConfigLimitsTransactions)
    transactions_status: ConfigLimitsTransactions = field(
        default_factory=ConfigLimitsTransactions
    )
    entries: ConfigLimitsEntries = field(default_factory=ConfigLimitsEntries)
    blocks_meta: ConfigLimitsBlocksMeta = field(default_factory=ConfigLimitsBlocksMeta)
    blocks: ConfigLimitsBlocks = field(default_factory=ConfigLimitsBlocks)

    @classmethod
    def from_dict(cls, data: Mapping) -> ConfigLimits:
        """Build limits from their configuration form; missing fields take defaults."""
        return _build(
            cls,
            data,
            "limits",
            {
                "name_max": _usize,
                "slots": lambda value, _: ConfigLimitsSlots._from_dict(value),
                "accounts": lambda value, _: ConfigLimitsAccounts._from_dict(value),
                "transactions": lambda value, _: ConfigLimitsTransactions._from_dict(value),
                "transactions_status": lambda value, _: ConfigLimitsTransactions._from_dict(
                    value
                ),
                "entries": lambda value, _: ConfigLimitsEntries._from_dict(value),
                "blocks_meta": lambda value, _: ConfigLimitsBlocksMeta._from_dict(value),
                "blocks": lambda value, _: ConfigLimitsBlocks._from_dict(value),
            },
        )

    def check_filter(self, config: ConfigFilter) -> None:
        """Raise ConfigLimitsError if the filter breaks any of these limits."""
        self.slots.check_filter(self.name_max, config.slots)
        self.accounts.check_filter(self.name_max, config.accounts, config.accounts_data_slice)
        self.transactions.check_filter(self.name_max, config.transactions)
        self.transactions_status.check_filter(self.name_max, config.transactions_status)
        self.entries.check_filter(self.name_max, config.entries)
        self.blocks_meta.check_filter(self.name_max, config.blocks_meta)
        self.blocks.check_filter(self.name_max, config.blocks)