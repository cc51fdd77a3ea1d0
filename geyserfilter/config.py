"""Subscription filter configuration: parsing, validation and request conversion."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Union

MAX_FILTERS = 4
MAX_DATA_SIZE = 128
MAX_DATA_BASE58_SIZE = 175
MAX_DATA_BASE64_SIZE = 172

PUBKEY_BYTES = 32
SIGNATURE_BYTES = 64
_MAX_PUBKEY_BASE58_LEN = 44
_MAX_SIGNATURE_BASE58_LEN = 88
_U64_MAX = 2**64 - 1


class ConfigFilterError(ValueError):
    """A filter configuration or subscribe request could not be understood."""


class ConfigLimitsError(ConfigFilterError):
    """A filter configuration exceeds the configured or built-in limits."""


def _data_overflow() -> ConfigLimitsError:
    return ConfigLimitsError(f"Filter data is too large, max size: {MAX_DATA_SIZE}")


def _too_much_filters() -> ConfigLimitsError:
    return ConfigLimitsError(f"Too much filters provided; max: {MAX_FILTERS}")


def _not_defined(name: str) -> ConfigFilterError:
    return ConfigFilterError(f"Field `{name}` should be defined")


# ---------------------------------------------------------------------------
# base58 and key encodings

_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_ALPHABET_INDEX = {char: index for index, char in enumerate(_ALPHABET)}


def b58encode(data: bytes) -> str:
    """Encode bytes with the Bitcoin base58 alphabet."""
    data = bytes(data)
    stripped = data.lstrip(b"\0")
    zeros = len(data) - len(stripped)
    number = int.from_bytes(stripped, "big")
    digits = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_ALPHABET[remainder])
    return "1" * zeros + "".join(reversed(digits))


def b58decode(text: str) -> bytes:
    """Decode a Bitcoin base58 string; raise ValueError on a bad character."""
    number = 0
    for char in text:
        try:
            number = number * 58 + _ALPHABET_INDEX[char]
        except KeyError:
            raise ValueError(f"invalid base58 character {char!r}") from None
    zeros = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    return b"\0" * zeros + body


def _decode_fixed(text: Any, size: int, max_len: int) -> bytes | None:
    """Return decoded bytes, or None when the input has the wrong size."""
    if len(text) > max_len:
        return None
    raw = b58decode(text)
    return raw if len(raw) == size else None


def pubkey_decode(text: str) -> bytes:
    """Decode a base58 public key into its 32 raw bytes."""
    if not isinstance(text, str):
        raise ConfigFilterError(f"Invalid pubkey `{text!r}`: expected a string")
    try:
        raw = _decode_fixed(text, PUBKEY_BYTES, _MAX_PUBKEY_BASE58_LEN)
    except ValueError:
        raise ConfigFilterError(f"Invalid pubkey `{text}`: Invalid Base58 string") from None
    if raw is None:
        raise ConfigFilterError(f"Invalid pubkey `{text}`: String is the wrong size")
    return raw


def pubkey_encode(pubkey: bytes) -> str:
    """Encode 32 raw public key bytes as base58."""
    if len(pubkey) != PUBKEY_BYTES:
        raise ValueError(f"pubkey must be {PUBKEY_BYTES} bytes, got {len(pubkey)}")
    return b58encode(pubkey)


def signature_decode(text: str) -> bytes:
    """Decode a base58 signature into its 64 raw bytes."""
    if not isinstance(text, str):
        raise ConfigFilterError(f"Invalid signature `{text!r}`: expected a string")
    try:
        raw = _decode_fixed(text, SIGNATURE_BYTES, _MAX_SIGNATURE_BASE58_LEN)
    except ValueError:
        raise ConfigFilterError(
            f"Invalid signature `{text}`: failed to decode string to signature"
        ) from None
    if raw is None:
        raise ConfigFilterError(
            f"Invalid signature `{text}`: string decoded to wrong size for signature"
        )
    return raw


def signature_encode(signature: bytes) -> str:
    """Encode 64 raw signature bytes as base58."""
    if len(signature) != SIGNATURE_BYTES:
        raise ValueError(f"signature must be {SIGNATURE_BYTES} bytes, got {len(signature)}")
    return b58encode(signature)


# ---------------------------------------------------------------------------
# small validation helpers


def _mapping(value: Any, what: str) -> Mapping:
    if not isinstance(value, Mapping):
        raise ConfigFilterError(f"invalid type for `{what}`: expected a map")
    return value


def _reject_unknown(data: Mapping, allowed: Iterable[str], what: str) -> None:
    allowed = set(allowed)
    for key in data:
        if key not in allowed:
            raise ConfigFilterError(f"unknown field `{key}` in {what}")


def _required(data: Mapping, key: str) -> Any:
    if key not in data:
        raise ConfigFilterError(f"missing field `{key}`")
    return data[key]


def _opt_bool(value: Any, what: str) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    raise ConfigFilterError(f"invalid type for `{what}`: expected a boolean")


def _uint(value: Any, what: str, limit: int = _U64_MAX) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= limit:
        raise ConfigFilterError(f"invalid value for `{what}`: expected an integer in 0..={limit}")
    return value


def _pubkey_list(values: Any, what: str) -> list[bytes]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise ConfigFilterError(f"invalid type for `{what}`: expected a list of pubkeys")
    return [pubkey_decode(value) for value in values]


def _oneof(value: Any, name: str) -> tuple[str, Any]:
    if not value:
        raise _not_defined(name)
    if not isinstance(value, Mapping) or len(value) != 1:
        raise ConfigFilterError(f"Field `{name}` must hold exactly one variant")
    ((kind, inner),) = value.items()
    return kind, inner


# ---------------------------------------------------------------------------
# enums and account filters


class CommitmentLevel(IntEnum):
    """Commitment level with its wire value."""

    PROCESSED = 0
    CONFIRMED = 1
    FINALIZED = 2

    @classmethod
    def from_int(cls, value: int) -> CommitmentLevel:
        try:
            return cls(value)
        except ValueError:
            raise ConfigFilterError(f"Unknown commitment level: {value}") from None

    @classmethod
    def _from_name(cls, name: Any) -> CommitmentLevel:
        if isinstance(name, str) and name.upper() in cls.__members__ and name == name.lower():
            return cls[name.upper()]
        raise ConfigFilterError(f"unknown commitment level `{name}`")


class LamportsCmp(Enum):
    """Comparison applied to an account's lamports."""

    EQ = "eq"
    NE = "ne"
    LT = "lt"
    GT = "gt"


@dataclass(frozen=True)
class Memcmp:
    """Match account data bytes at an offset."""

    offset: int
    data: bytes

    def _to_request(self) -> dict:
        return {"memcmp": {"offset": self.offset, "data": {"bytes": self.data}}}


@dataclass(frozen=True)
class DataSize:
    """Match accounts whose data has exactly this length."""

    size: int

    def _to_request(self) -> dict:
        return {"datasize": self.size}


@dataclass(frozen=True)
class TokenAccountState:
    """Match accounts holding valid token account data."""

    def _to_request(self) -> dict:
        return {"token_account_state": True}


@dataclass(frozen=True)
class Lamports:
    """Compare an account's lamports against a value."""

    cmp: LamportsCmp
    value: int

    def _to_request(self) -> dict:
        return {"lamports": {"cmp": {self.cmp.value: self.value}}}


AccountsFilter = Union[Memcmp, DataSize, TokenAccountState, Lamports]


def parse_memcmp_data(data: Any) -> bytes:
    """Parse memcmp data given as ``{"Str": text}``, ``{"Bytes": [...]}``, text or bytes."""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, Mapping):
        kind, value = _oneof(data, "data")
        if kind == "Bytes":
            if isinstance(value, (bytes, bytearray)):
                return bytes(value)
            return bytes(_uint(byte, "data", 255) for byte in value)
        if kind != "Str":
            raise ConfigFilterError(f"unknown variant `{kind}`, expected `Str` or `Bytes`")
        text = value
    else:
        text = data
    if not isinstance(text, str):
        raise ConfigFilterError("invalid type for memcmp data: expected a string or bytes")
    raw = text.encode()
    # The encoding prefix check looks at seven bytes, which no six-letter
    # prefix ever equals: strings are always taken verbatim.
    if len(raw) < 7:
        raise ConfigFilterError("memcmp string data must be at least 7 bytes long")
    try:
        raw[:7].decode()
    except UnicodeDecodeError:
        raise ConfigFilterError("memcmp string data splits a character at byte 7") from None
    return raw


def parse_accounts_filter(data: Any) -> AccountsFilter:
    """Parse one account filter in its configuration form."""
    if data == "TokenAccountState":
        return TokenAccountState()
    if not isinstance(data, Mapping) or len(data) != 1:
        raise ConfigFilterError("invalid accounts filter: expected exactly one variant")
    ((kind, value),) = data.items()
    if kind == "Memcmp":
        value = _mapping(value, "Memcmp")
        offset = _uint(_required(value, "offset"), "offset")
        return Memcmp(offset, parse_memcmp_data(_required(value, "data")))
    if kind == "DataSize":
        return DataSize(_uint(value, "DataSize"))
    if kind == "TokenAccountState" and value is None:
        return TokenAccountState()
    if kind == "Lamports":
        cmp_name, cmp_value = _oneof(_mapping(value, "Lamports"), "Lamports")
        for cmp in LamportsCmp:
            if cmp_name == cmp.value.capitalize():
                return Lamports(cmp, _uint(cmp_value, "Lamports"))
        raise ConfigFilterError(f"unknown variant `{cmp_name}`, expected one of Eq, Ne, Lt, Gt")
    raise ConfigFilterError(f"unknown accounts filter variant `{kind}`")


def _accounts_filter_from_request(message: Mapping) -> AccountsFilter:
    kind, value = _oneof(message.get("filter"), "filter")
    if kind == "memcmp":
        data_kind, data = _oneof(value.get("data"), "data")
        if data_kind == "bytes":
            raw = bytes(data)
        elif data_kind == "base58":
            if len(data) > MAX_DATA_BASE58_SIZE:
                raise _data_overflow()
            try:
                raw = b58decode(data)
            except ValueError:
                raise ConfigFilterError("Invalid base58 encoding") from None
        elif data_kind == "base64":
            if len(data) > MAX_DATA_BASE64_SIZE:
                raise _data_overflow()
            try:
                raw = base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError):
                raise ConfigFilterError("Invalid base64 encoding") from None
        else:
            raise ConfigFilterError(f"unknown memcmp data variant `{data_kind}`")
        if len(raw) > MAX_DATA_SIZE:
            raise _data_overflow()
        return Memcmp(value.get("offset", 0), raw)
    if kind == "datasize":
        return DataSize(value)
    if kind == "token_account_state":
        if not value:
            raise ConfigFilterError("Token account state value is invalid")
        return TokenAccountState()
    if kind == "lamports":
        cmp_name, cmp_value = _oneof(value.get("cmp"), "cmp")
        try:
            cmp = LamportsCmp(cmp_name)
        except ValueError:
            raise ConfigFilterError(f"unknown lamports comparison `{cmp_name}`") from None
        return Lamports(cmp, cmp_value)
    raise ConfigFilterError(f"unknown accounts filter variant `{kind}`")


# ---------------------------------------------------------------------------
# per-stream filters


@dataclass(frozen=True)
class ConfigFilterSlots:
    """Slot stream filter."""

    filter_by_commitment: bool | None = None
    interslot_updates: bool | None = None

    _FIELDS = ("filter_by_commitment", "interslot_updates")

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigFilterSlots:
        data = _mapping(data, "slots filter")
        _reject_unknown(data, cls._FIELDS, "slots filter")
        return cls(*(_opt_bool(data.get(name), name) for name in cls._FIELDS))

    @classmethod
    def _from_request(cls, message: Mapping) -> ConfigFilterSlots:
        return cls(message.get("filter_by_commitment"), message.get("interslot_updates"))

    def _to_request(self) -> dict:
        return {
            "filter_by_commitment": self.filter_by_commitment,
            "interslot_updates": self.interslot_updates,
        }


@dataclass
class ConfigFilterAccounts:
    """Account stream filter."""

    account: list[bytes] = field(default_factory=list)
    owner: list[bytes] = field(default_factory=list)
    filters: list[AccountsFilter] = field(default_factory=list)
    nonempty_txn_signature: bool | None = None

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigFilterAccounts:
        data = _mapping(data, "accounts filter")
        _reject_unknown(
            data, ("account", "owner", "filters", "nonempty_txn_signature"), "accounts filter"
        )
        return cls(
            account=_pubkey_list(data.get("account", ()), "account"),
            owner=_pubkey_list(data.get("owner", ()), "owner"),
            filters=[parse_accounts_filter(item) for item in data.get("filters", ())],
            nonempty_txn_signature=_opt_bool(
                data.get("nonempty_txn_signature"), "nonempty_txn_signature"
            ),
        )

    @classmethod
    def _from_request(cls, message: Mapping) -> ConfigFilterAccounts:
        account = [pubkey_decode(key) for key in message.get("account", ())]
        owner = [pubkey_decode(key) for key in message.get("owner", ())]
        filters = list(message.get("filters", ()))
        if len(filters) > MAX_FILTERS:
            raise _too_much_filters()
        return cls(
            account=account,
            owner=owner,
            filters=[_accounts_filter_from_request(item) for item in filters],
            nonempty_txn_signature=message.get("nonempty_txn_signature"),
        )

    def _to_request(self) -> dict:
        return {
            "account": [pubkey_encode(key) for key in self.account],
            "owner": [pubkey_encode(key) for key in self.owner],
            "filters": [{"filter": item._to_request()} for item in self.filters],
            "nonempty_txn_signature": self.nonempty_txn_signature,
        }


@dataclass(frozen=True)
class ConfigFilterAccountsDataSlice:
    """A byte range of account data to send."""

    offset: int
    length: int

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigFilterAccountsDataSlice:
        data = _mapping(data, "data slice")
        _reject_unknown(data, ("offset", "length"), "data slice")
        return cls(
            _uint(_required(data, "offset"), "offset"),
            _uint(_required(data, "length"), "length"),
        )

    @classmethod
    def _from_request(cls, message: Mapping) -> ConfigFilterAccountsDataSlice:
        return cls(message.get("offset", 0), message.get("length", 0))

    def _to_request(self) -> dict:
        return {"offset": self.offset, "length": self.length}


@dataclass
class ConfigFilterTransactions:
    """Transaction (or transaction status) stream filter."""

    vote: bool | None = None
    failed: bool | None = None
    signature: bytes | None = None
    account_include: list[bytes] = field(default_factory=list)
    account_exclude: list[bytes] = field(default_factory=list)
    account_required: list[bytes] = field(default_factory=list)

    _KEYS = ("account_include", "account_exclude", "account_required")

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigFilterTransactions:
        data = _mapping(data, "transactions filter")
        _reject_unknown(data, ("vote", "failed", "signature", *cls._KEYS), "transactions filter")
        signature = data.get("signature")
        return cls(
            vote=_opt_bool(data.get("vote"), "vote"),
            failed=_opt_bool(data.get("failed"), "failed"),
            signature=None if signature is None else signature_decode(signature),
            **{key: _pubkey_list(data.get(key, ()), key) for key in cls._KEYS},
        )

    @classmethod
    def _from_request(cls, message: Mapping) -> ConfigFilterTransactions:
        signature = message.get("signature")
        return cls(
            vote=message.get("vote"),
            failed=message.get("failed"),
            signature=None if signature is None else signature_decode(signature),
            **{key: [pubkey_decode(k) for k in message.get(key, ())] for key in cls._KEYS},
        )

    def _to_request(self) -> dict:
        return {
            "vote": self.vote,
            "failed": self.failed,
            "signature": None if self.signature is None else signature_encode(self.signature),
            **{key: [pubkey_encode(k) for k in getattr(self, key)] for key in self._KEYS},
        }


@dataclass
class ConfigFilterBlocks:
    """Block stream filter."""

    account_include: list[bytes] = field(default_factory=list)
    include_transactions: bool | None = None
    include_accounts: bool | None = None
    include_entries: bool | None = None

    _FLAGS = ("include_transactions", "include_accounts", "include_entries")

    @classmethod
    def _from_dict(cls, data: Any) -> ConfigFilterBlocks:
        data = _mapping(data, "blocks filter")
        _reject_unknown(data, ("account_include", *cls._FLAGS), "blocks filter")
        return cls(
            account_include=_pubkey_list(data.get("account_include", ()), "account_include"),
            **{flag: _opt_bool(data.get(flag), flag) for flag in cls._FLAGS},
        )

    @classmethod
    def _from_request(cls, message: Mapping) -> ConfigFilterBlocks:
        return cls(
            account_include=[pubkey_decode(k) for k in message.get("account_include", ())],
            **{flag: message.get(flag) for flag in cls._FLAGS},
        )

    def _to_request(self) -> dict:
        return {
            "account_include": [pubkey_encode(k) for k in self.account_include],
            **{flag: getattr(self, flag) for flag in self._FLAGS},
        }


# ---------------------------------------------------------------------------
# the whole subscription


def _named(data: Any, what: str, parse) -> dict:
    return {name: parse(value) for name, value in _mapping(data, what).items()}


def _names(data: Any, what: str) -> set[str]:
    if isinstance(data, (str, bytes)) or not isinstance(data, Iterable):
        raise ConfigFilterError(f"invalid type for `{what}`: expected a list of names")
    return set(data)


@dataclass
class ConfigFilter:
    """All named filters of one subscription."""

    slots: dict[str, ConfigFilterSlots] = field(default_factory=dict)
    accounts: dict[str, ConfigFilterAccounts] = field(default_factory=dict)
    accounts_data_slice: list[ConfigFilterAccountsDataSlice] = field(default_factory=list)
    transactions: dict[str, ConfigFilterTransactions] = field(default_factory=dict)
    transactions_status: dict[str, ConfigFilterTransactions] = field(default_factory=dict)
    entries: set[str] = field(default_factory=set)
    blocks_meta: set[str] = field(default_factory=set)
    blocks: dict[str, ConfigFilterBlocks] = field(default_factory=dict)
    commitment: CommitmentLevel | None = None

    _FIELDS = (
        "slots",
        "accounts",
        "accounts_data_slice",
        "transactions",
        "transactions_status",
        "entries",
        "blocks_meta",
        "blocks",
        "commitment",
    )

    @classmethod
    def from_dict(cls, data: Mapping) -> ConfigFilter:
        """Build a filter from its configuration form; unknown fields are errors."""
        data = _mapping(data, "filter")
        _reject_unknown(data, cls._FIELDS, "filter")
        commitment = data.get("commitment")
        return cls(
            slots=_named(data.get("slots", {}), "slots", ConfigFilterSlots._from_dict),
            accounts=_named(data.get("accounts", {}), "accounts", ConfigFilterAccounts._from_dict),
            accounts_data_slice=[
                ConfigFilterAccountsDataSlice._from_dict(item)
                for item in data.get("accounts_data_slice", ())
            ],
            transactions=_named(
                data.get("transactions", {}), "transactions", ConfigFilterTransactions._from_dict
            ),
            transactions_status=_named(
                data.get("transactions_status", {}),
                "transactions_status",
                ConfigFilterTransactions._from_dict,
            ),
            entries=_names(data.get("entries", ()), "entries"),
            blocks_meta=_names(data.get("blocks_meta", ()), "blocks_meta"),
            blocks=_named(data.get("blocks", {}), "blocks", ConfigFilterBlocks._from_dict),
            commitment=None if commitment is None else CommitmentLevel._from_name(commitment),
        )

    @classmethod
    def from_request(cls, request: Mapping) -> ConfigFilter:
        """Build a filter from a subscribe request given as nested mappings."""
        commitment = request.get("commitment")
        return cls(
            slots={k: ConfigFilterSlots._from_request(v) for k, v in request.get("slots", {}).items()},
            accounts={
                k: ConfigFilterAccounts._from_request(v)
                for k, v in request.get("accounts", {}).items()
            },
            accounts_data_slice=[
                ConfigFilterAccountsDataSlice._from_request(item)
                for item in request.get("accounts_data_slice", ())
            ],
            transactions={
                k: ConfigFilterTransactions._from_request(v)
                for k, v in request.get("transactions", {}).items()
            },
            transactions_status={
                k: ConfigFilterTransactions._from_request(v)
                for k, v in request.get("transactions_status", {}).items()
            },
            entries=set(request.get("entry", {})),
            blocks_meta=set(request.get("blocks_meta", {})),
            blocks={
                k: ConfigFilterBlocks._from_request(v) for k, v in request.get("blocks", {}).items()
            },
            commitment=None if commitment is None else CommitmentLevel.from_int(commitment),
        )

    def to_request(self) -> dict:
        """Render this filter as a subscribe request of nested mappings."""
        return {
            "slots": {k: v._to_request() for k, v in self.slots.items()},
            "accounts": {k: v._to_request() for k, v in self.accounts.items()},
            "accounts_data_slice": [item._to_request() for item in self.accounts_data_slice],
            "transactions": {k: v._to_request() for k, v in self.transactions.items()},
            "transactions_status": {
                k: v._to_request() for k, v in self.transactions_status.items()
            },
            "entry": {name: {} for name in self.entries},
            "blocks_meta": {name: {} for name in self.blocks_meta},
            "blocks": {k: v._to_request() for k, v in self.blocks.items()},
            "commitment": None if self.commitment is None else int(self.commitment),
            "ping": None,
            "from_slot": None,
        }