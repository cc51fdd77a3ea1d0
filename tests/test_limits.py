import pytest
from hypothesis import given
from hypothesis import strategies as st

from geyserfilter.config import (
    ConfigFilter,
    ConfigFilterAccounts,
    ConfigFilterAccountsDataSlice,
    ConfigFilterBlocks,
    ConfigFilterError,
    ConfigFilterSlots,
    ConfigFilterTransactions,
    ConfigLimitsError,
    DataSize,
    Lamports,
    LamportsCmp,
    Memcmp,
    TokenAccountState,
    pubkey_encode,
)
from geyserfilter.limits import (
    ConfigLimits,
    ConfigLimitsAccounts,
    ConfigLimitsBlocks,
    ConfigLimitsBlocksMeta,
    ConfigLimitsEntries,
    ConfigLimitsSlots,
    ConfigLimitsTransactions,
)

PK1 = bytes([1]) * 32
PK2 = bytes([2]) * 32
PK3 = bytes([3]) * 32


def _slice(offset, length):
    return ConfigFilterAccountsDataSlice(offset, length)


def test_default_limits_accept_broad_filter():
    config = ConfigFilter(
        slots={"s": ConfigFilterSlots()},
        accounts={"a": ConfigFilterAccounts()},
        transactions={"t": ConfigFilterTransactions()},
        transactions_status={"ts": ConfigFilterTransactions()},
        entries={"e"},
        blocks_meta={"bm"},
        blocks={"b": ConfigFilterBlocks(include_accounts=True, include_entries=True)},
    )
    assert ConfigLimits().check_filter(config) is None
    assert ConfigLimits().name_max == 128


def test_name_too_long():
    limits = ConfigLimits()
    ok = ConfigFilter(slots={"x" * 128: ConfigFilterSlots()})
    assert limits.check_filter(ok) is None
    bad = ConfigFilter(slots={"x" * 129: ConfigFilterSlots()})
    with pytest.raises(ConfigLimitsError, match="Filter name exceeds limit, max 128"):
        limits.check_filter(bad)


def test_name_length_counts_bytes():
    with pytest.raises(ConfigLimitsError, match="Filter name exceeds limit"):
        ConfigLimitsSlots().check_filter(2, {"é€": ConfigFilterSlots()})


def test_slots_max():
    limits = ConfigLimitsSlots(max=1)
    assert limits.check_filter(10, {"a": ConfigFilterSlots()}) is None
    with pytest.raises(ConfigLimitsError, match="only 1 allowed"):
        limits.check_filter(10, {"a": ConfigFilterSlots(), "b": ConfigFilterSlots()})


def test_entries_and_blocks_meta_max():
    with pytest.raises(ConfigLimitsError, match="filters/data_slices"):
        ConfigLimitsEntries(max=0).check_filter(10, {"e"})
    with pytest.raises(ConfigLimitsError, match="filters/data_slices"):
        ConfigLimitsBlocksMeta(max=1).check_filter(10, {"a", "b"})
    with pytest.raises(ConfigLimitsError, match="Filter name exceeds"):
        ConfigLimitsBlocksMeta().check_filter(1, {"ab"})


def test_accounts_any_not_allowed():
    limits = ConfigLimitsAccounts(any=False)
    with pytest.raises(ConfigLimitsError, match="`any` is not allowed"):
        limits.check_filter(128, {"a": ConfigFilterAccounts()}, [])
    assert limits.check_filter(128, {"a": ConfigFilterAccounts(owner=[PK1])}, []) is None


def test_accounts_pubkey_max():
    limits = ConfigLimitsAccounts(account_max=1, owner_max=1)
    with pytest.raises(ConfigLimitsError, match="Max amount of Pubkeys is reached, only 1"):
        limits.check_filter(128, {"a": ConfigFilterAccounts(account=[PK1, PK2])}, [])
    with pytest.raises(ConfigLimitsError, match="Max amount of Pubkeys"):
        limits.check_filter(128, {"a": ConfigFilterAccounts(owner=[PK1, PK2])}, [])


def test_accounts_reject():
    limits = ConfigLimitsAccounts(account_reject={PK1}, owner_reject={PK2})
    with pytest.raises(ConfigLimitsError, match=pubkey_encode(PK1)):
        limits.check_filter(128, {"a": ConfigFilterAccounts(account=[PK1])}, [])
    with pytest.raises(ConfigLimitsError, match="in filters is not allowed"):
        limits.check_filter(128, {"a": ConfigFilterAccounts(owner=[PK2])}, [])
    assert limits.check_filter(128, {"a": ConfigFilterAccounts(account=[PK2])}, []) is None


def test_accounts_too_many_filters():
    filters = [
        Memcmp(0, b"a"),
        DataSize(1),
        TokenAccountState(),
        Lamports(LamportsCmp.EQ, 1),
        Lamports(LamportsCmp.GT, 0),
    ]
    with pytest.raises(ConfigLimitsError, match="Too much filters provided; max: 4"):
        ConfigLimitsAccounts().check_filter(128, {"a": ConfigFilterAccounts(filters=filters)}, [])


def test_accounts_memcmp_data_overflow():
    ok = ConfigFilterAccounts(filters=[Memcmp(0, b"\0" * 128)])
    assert ConfigLimitsAccounts().check_filter(128, {"a": ok}, []) is None
    bad = ConfigFilterAccounts(filters=[Memcmp(0, b"\0" * 129)])
    with pytest.raises(ConfigLimitsError, match="Filter data is too large, max size: 128"):
        ConfigLimitsAccounts().check_filter(128, {"a": bad}, [])


def test_accounts_datasize_duplicated():
    bad = ConfigFilterAccounts(filters=[DataSize(1), DataSize(2)])
    with pytest.raises(ConfigLimitsError, match="Datasize used more than once"):
        ConfigLimitsAccounts().check_filter(128, {"a": bad}, [])


def test_data_slices_max():
    with pytest.raises(ConfigLimitsError, match="filters/data_slices"):
        ConfigLimitsAccounts(data_slice_max=1).check_filter(
            128, {}, [_slice(0, 1), _slice(1, 1)]
        )


def test_data_slices_out_of_order():
    with pytest.raises(ConfigLimitsError, match="data slices out of order"):
        ConfigLimitsAccounts().check_filter(128, {}, [_slice(10, 1), _slice(0, 1)])


def test_data_slices_overlap():
    with pytest.raises(ConfigLimitsError, match="data slices overlapped"):
        ConfigLimitsAccounts().check_filter(128, {}, [_slice(0, 10), _slice(5, 1)])
    assert ConfigLimitsAccounts().check_filter(128, {}, [_slice(0, 10), _slice(10, 1)]) is None


@given(st.lists(st.tuples(st.integers(0, 50), st.integers(0, 50)), min_size=1, max_size=6))
def test_data_slices_sorted_disjoint_accepted(parts):
    slices = []
    offset = 0
    for gap, length in parts:
        offset += gap
        slices.append(_slice(offset, length))
        offset += length
    assert ConfigLimitsAccounts().check_filter(128, {}, slices) is None


@given(st.lists(st.integers(0, 1000), min_size=2, max_size=6, unique=True))
def test_data_slices_reverse_order_rejected(offsets):
    slices = [_slice(offset, 0) for offset in sorted(offsets, reverse=True)]
    with pytest.raises(ConfigLimitsError, match="out of order"):
        ConfigLimitsAccounts().check_filter(128, {}, slices)


def test_transactions_any_not_allowed():
    limits = ConfigLimitsTransactions(any=False)
    with pytest.raises(ConfigLimitsError, match="`any` is not allowed"):
        limits.check_filter(128, {"t": ConfigFilterTransactions()})
    assert limits.check_filter(128, {"t": ConfigFilterTransactions(vote=False)}) is None


def test_transactions_pubkey_limits():
    limits = ConfigLimitsTransactions(
        account_include_max=1, account_exclude_max=1, account_required_max=1
    )
    for key in ("account_include", "account_exclude", "account_required"):
        tx_filter = ConfigFilterTransactions(**{key: [PK1, PK2]})
        with pytest.raises(ConfigLimitsError, match="Max amount of Pubkeys"):
            limits.check_filter(128, {"t": tx_filter})


def test_transactions_include_reject_only_applies_to_include():
    limits = ConfigLimitsTransactions(account_include_reject={PK3})
    with pytest.raises(ConfigLimitsError, match="not allowed"):
        limits.check_filter(128, {"t": ConfigFilterTransactions(account_include=[PK3])})
    assert limits.check_filter(128, {"t": ConfigFilterTransactions(account_exclude=[PK3])}) is None


def test_transactions_status_checked_separately():
    limits = ConfigLimits(transactions_status=ConfigLimitsTransactions(max=0))
    assert limits.check_filter(ConfigFilter(transactions={"t": ConfigFilterTransactions()})) is None
    with pytest.raises(ConfigLimitsError, match="filters/data_slices"):
        limits.check_filter(ConfigFilter(transactions_status={"t": ConfigFilterTransactions()}))


def test_blocks_account_include_any_and_max():
    with pytest.raises(ConfigLimitsError, match="`any` is not allowed"):
        ConfigLimitsBlocks(account_include_any=False).check_filter(128, {"b": ConfigFilterBlocks()})
    with pytest.raises(ConfigLimitsError, match="Max amount of Pubkeys"):
        ConfigLimitsBlocks(account_include_max=1).check_filter(
            128, {"b": ConfigFilterBlocks(account_include=[PK1, PK2])}
        )
    with pytest.raises(ConfigLimitsError, match="in filters is not allowed"):
        ConfigLimitsBlocks(account_include_reject={PK1}).check_filter(
            128, {"b": ConfigFilterBlocks(account_include=[PK1])}
        )


def test_blocks_include_transactions():
    limits = ConfigLimitsBlocks(include_transactions=False)
    with pytest.raises(ConfigLimitsError, match="`include_transactions` is not allowed"):
        limits.check_filter(128, {"b": ConfigFilterBlocks()})
    assert limits.check_filter(128, {"b": ConfigFilterBlocks(include_transactions=False)}) is None


def test_blocks_include_accounts():
    limits = ConfigLimitsBlocks(include_accounts=False)
    with pytest.raises(ConfigLimitsError, match="`include_accounts` is not allowed"):
        limits.check_filter(128, {"b": ConfigFilterBlocks(include_accounts=True)})
    assert limits.check_filter(128, {"b": ConfigFilterBlocks()}) is None


def test_blocks_include_entries_follows_accounts_switch():
    denied = ConfigLimitsBlocks(include_accounts=False)
    with pytest.raises(ConfigLimitsError, match="`include_entries` is not allowed"):
        denied.check_filter(128, {"b": ConfigFilterBlocks(include_entries=True)})
    allowed = ConfigLimitsBlocks(include_entries=False)
    assert allowed.check_filter(128, {"b": ConfigFilterBlocks(include_entries=True)}) is None


def test_from_dict_defaults():
    assert ConfigLimits.from_dict({}) == ConfigLimits()


def test_from_dict_values():
    limits = ConfigLimits.from_dict(
        {
            "name_max": 8,
            "slots": {"max": "2"},
            "accounts": {"max": 3, "any": False, "owner_reject": [pubkey_encode(PK1)]},
            "transactions": {"account_include_max": "5"},
            "blocks": {"include_entries": False},
        }
    )
    assert limits.name_max == 8
    assert limits.slots.max == 2
    assert limits.accounts.max == 3
    assert limits.accounts.any is False
    assert limits.accounts.owner_reject == {PK1}
    assert limits.transactions.account_include_max == 5
    assert limits.blocks.include_entries is False
    assert limits.entries == ConfigLimitsEntries()


def test_from_dict_rejects_unknown_fields():
    with pytest.raises(ConfigFilterError, match="unknown field `bogus`"):
        ConfigLimits.from_dict({"bogus": 1})
    with pytest.raises(ConfigFilterError, match="unknown field `min`"):
        ConfigLimits.from_dict({"slots": {"min": 1}})


def test_from_dict_bad_values():
    with pytest.raises(ConfigFilterError):
        ConfigLimits.from_dict({"accounts": {"max": "3"}})
    with pytest.raises(ConfigFilterError):
        ConfigLimits.from_dict({"slots": {"max": "many"}})
    with pytest.raises(ConfigFilterError):
        ConfigLimits.from_dict({"accounts": {"any": "yes"}})
    with pytest.raises(ConfigFilterError):
        ConfigLimits.from_dict({"blocks": {"account_include_reject": ["not-a-key"]}})


def test_from_dict_limits_apply():
    limits = ConfigLimits.from_dict({"entries": {"max": "1"}})
    assert limits.check_filter(ConfigFilter(entries={"a"})) is None
    with pytest.raises(ConfigLimitsError, match="only 1 allowed"):
        limits.check_filter(ConfigFilter(entries={"a", "b"}))