import pytest
from hypothesis import given, strategies as st

from geyserfilter.message import (
    Encoding,
    MessageAccount,
    MessageBlockMeta,
    MessageEntry,
    MessageParseError,
    MessageSlot,
    MessageTransaction,
    SlotStatus,
    Timestamp,
    gen_account_keys,
)

KEY_A = bytes([1]) * 32
KEY_B = bytes([2]) * 32
KEY_C = bytes([3]) * 32
SIG = bytes([9]) * 64
TS = Timestamp(10, 0)


def make_account(encoding=Encoding.PROST, raw_size=100, txn_signature=None, in_block=False):
    return MessageAccount(
        pubkey=KEY_A,
        owner=KEY_B,
        lamports=5,
        executable=False,
        rent_epoch=0,
        data=b"abc",
        txn_signature=txn_signature,
        write_version=1,
        slot=7,
        is_startup=False,
        created_at=TS,
        encoding=encoding,
        raw_size=raw_size,
        in_block=in_block,
    )


def make_tx(error=None, keys=(KEY_A,), encoding=Encoding.PROST, raw_size=50, info=None):
    return MessageTransaction(
        signature=SIG,
        error=error,
        account_keys=frozenset(keys),
        info=info if info is not None else {"is_vote": True, "index": 4},
        slot=3,
        created_at=TS,
        encoding=encoding,
        raw_size=raw_size,
    )


def test_timestamp_millis_truncates():
    assert Timestamp(1, 999_999_999).as_millis() == 1999


@given(st.integers(min_value=0, max_value=10**9), st.integers(min_value=0, max_value=999_999))
def test_timestamp_sub_millisecond_nanos_ignored(seconds, nanos):
    assert Timestamp(seconds, nanos).as_millis() == Timestamp(seconds, 0).as_millis()


def test_slot_status_converted_from_int():
    slot = MessageSlot(1, None, 2, None, TS)
    assert slot.status is SlotStatus.SLOT_FINALIZED


def test_slot_status_invalid():
    with pytest.raises(MessageParseError, match="Invalid enum value: 42"):
        MessageSlot(1, None, 42, None, TS)


def test_slot_size_by_encoding():
    prost = MessageSlot(1, 0, SlotStatus.SLOT_PROCESSED, None, TS, Encoding.PROST, 30)
    limited = MessageSlot(1, 0, SlotStatus.SLOT_PROCESSED, None, TS, Encoding.LIMITED, 30)
    assert prost.size() == 30
    assert limited.size() == 30 + 64


def test_account_invalid_pubkey():
    with pytest.raises(MessageParseError, match="Invalid pubkey length"):
        MessageAccount(b"short", KEY_B, 0, False, 0, b"", None, 0, 0, False, TS)


def test_account_invalid_owner():
    with pytest.raises(MessageParseError, match="Invalid pubkey length"):
        MessageAccount(KEY_A, b"x" * 31, 0, False, 0, b"", None, 0, 0, False, TS)


def test_account_nonempty_txn_signature():
    assert make_account(txn_signature=SIG).nonempty_txn_signature() is True
    assert make_account().nonempty_txn_signature() is False


def test_account_block_size_larger_than_standalone():
    assert make_account(in_block=True).size() - make_account().size() == 12


def test_account_limited_size_grows_with_raw_size():
    assert make_account(Encoding.LIMITED, 200).size() - make_account(Encoding.LIMITED, 100).size() == 100


def test_transaction_failed():
    assert make_tx().failed() is False
    assert make_tx(error={"err": b"\x01"}).failed() is True


def test_transaction_info_fields():
    tx = make_tx()
    assert tx.vote is True
    assert tx.index == 4


def test_transaction_info_defaults():
    tx = make_tx(info={})
    assert tx.vote is False
    assert tx.index == 0


def test_transaction_invalid_signature():
    with pytest.raises(MessageParseError, match="Invalid signature length"):
        MessageTransaction(b"x" * 10, None, frozenset(), {}, 0, TS)


def test_transaction_size_counts_keys():
    one = make_tx(keys=(KEY_A,))
    three = make_tx(keys=(KEY_A, KEY_B, KEY_C))
    assert three.size() - one.size() == 64


def test_transaction_limited_size_doubles_buffer():
    small = make_tx(encoding=Encoding.LIMITED, raw_size=10)
    large = make_tx(encoding=Encoding.LIMITED, raw_size=20)
    assert large.size() - small.size() == 20


def test_entry_size():
    assert MessageEntry(1, 2, 3, TS, Encoding.PROST, 40).size() == 40
    assert MessageEntry(1, 2, 3, TS, Encoding.LIMITED, 40).size() == 40 + 52


def test_block_meta_fields_and_size():
    meta = MessageBlockMeta(
        {"slot": 11, "blockhash": "hash", "executed_transaction_count": 6, "entries_count": 2},
        block_height=9,
        created_at=TS,
        encoding=Encoding.LIMITED,
        raw_size=25,
    )
    assert meta.slot == 11
    assert meta.blockhash == "hash"
    assert meta.executed_transaction_count == 6
    assert meta.entries_count == 2
    assert meta.size() == 50


def test_gen_account_keys_collects_and_dedups():
    info = {"transaction": {"message": {"account_keys": [KEY_A, KEY_B]}}}
    meta = {"loaded_writable_addresses": [KEY_B], "loaded_readonly_addresses": [KEY_C]}
    assert gen_account_keys(info, meta) == {KEY_A, KEY_B, KEY_C}


def test_gen_account_keys_without_message():
    meta = {"loaded_readonly_addresses": [KEY_C]}
    assert gen_account_keys({"transaction": {}}, meta) == {KEY_C}


def test_gen_account_keys_requires_transaction():
    with pytest.raises(MessageParseError, match="Field `transaction` should be defined"):
        gen_account_keys({}, {})


def test_gen_account_keys_invalid_key():
    info = {"transaction": {"message": {"account_keys": [b"bad"]}}}
    with pytest.raises(MessageParseError, match="Invalid pubkey length"):
        gen_account_keys(info, {})