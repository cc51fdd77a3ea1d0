# geyserfilter

Subscription filters for Solana Geyser update streams. The package parses
subscription filters (from a configuration mapping or from a subscribe
request given as nested mappings), checks them against server-side limits,
and matches slot, account, transaction, entry, block-meta and block messages
against them. It has no dependencies outside the standard library.

## Installation

```
pip install geyserfilter
```

## Modules

- `geyserfilter.config`: `ConfigFilter` and its parts (`ConfigFilterSlots`,
  `ConfigFilterAccounts`, `ConfigFilterAccountsDataSlice`,
  `ConfigFilterTransactions`, `ConfigFilterBlocks`); the account filter
  variants `Memcmp`, `DataSize`, `TokenAccountState` and `Lamports` (with
  `LamportsCmp`); `CommitmentLevel`; `parse_accounts_filter` and
  `parse_memcmp_data`; and base58 helpers `b58encode`, `b58decode`,
  `pubkey_encode`, `pubkey_decode`, `signature_encode`, `signature_decode`.
  `ConfigFilter.from_dict` reads the configuration form and rejects unknown
  fields; `ConfigFilter.from_request` and `ConfigFilter.to_request` convert
  to and from a subscribe request made of dicts and lists.
- `geyserfilter.limits`: `ConfigLimits` and its sections
  (`ConfigLimitsSlots`, `ConfigLimitsAccounts`, `ConfigLimitsTransactions`,
  `ConfigLimitsEntries`, `ConfigLimitsBlocksMeta`, `ConfigLimitsBlocks`).
  `ConfigLimits.from_dict` builds limits (missing fields take unlimited or
  permissive defaults, `name_max` defaults to 128) and `check_filter` raises
  `ConfigLimitsError` for the first rule a filter breaks.
- `geyserfilter.message`: `MessageSlot`, `MessageAccount`,
  `MessageTransaction`, `MessageEntry`, `MessageBlockMeta`, `Timestamp`,
  `SlotStatus`, `Encoding`, `gen_account_keys` and `MessageParseError`.
  Every message has a `size()` estimate of the memory it holds.
- `geyserfilter.parse`: `parse_update` turns a decoded update mapping into a
  message, `create_block` assembles a `MessageBlock` from parts that share one
  encoding, and `message_slot` gives the slot of any message.
- `geyserfilter.updates`: `FilteredUpdate`, `UpdateType`,
  `FilterAccountDataSlices` (cuts configured byte ranges out of account data),
  `BlocksFilter` and `full_update`.
- `geyserfilter.filter`: `Filter`, whose `get_updates(message, commitment)`
  returns the list of `FilteredUpdate` values a subscription receives, plus
  `is_token_account` and `lamports_match`.

## Example

```python
from geyserfilter.config import CommitmentLevel, ConfigFilter
from geyserfilter.filter import Filter
from geyserfilter.limits import ConfigLimits
from geyserfilter.message import MessageSlot, SlotStatus, Timestamp

config = ConfigFilter.from_dict({
    "slots": {"client": {"filter_by_commitment": True}},
    "accounts": {
        "tokens": {
            "owner": ["TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"],
            "filters": [{"DataSize": 165}],
        }
    },
    "commitment": "confirmed",
})

ConfigLimits.from_dict({"accounts": {"max": 4}}).check_filter(config)

message = MessageSlot(
    slot=100,
    parent=99,
    status=SlotStatus.SLOT_CONFIRMED,
    dead_error=None,
    created_at=Timestamp(seconds=1_700_000_000),
)

flt = Filter(config)
for update in flt.get_updates(message, CommitmentLevel.CONFIRMED):
    print(update.update_type, update.filters)   # UpdateType.SLOT ('client',)
```

Commitment names in the configuration form are lower case (`"processed"`,
`"confirmed"`, `"finalized"`); in a request they are the integers 0, 1 and 2.
Memcmp data given as a string in the configuration form is used as its UTF-8
bytes and must be at least 7 bytes long; in a request it may be raw bytes,
base58 or base64.

## Errors

- `ConfigFilterError` (a `ValueError`): a malformed configuration or request.
- `ConfigLimitsError` (a subclass of `ConfigFilterError`): a filter that
  breaks a limit, including the built-in ones (at most 4 account filters,
  memcmp data of at most 128 bytes).
- `MessageParseError` (a `ValueError`): an update that cannot become a message.

## What it does not do

- It does not read or write the protobuf wire format. Updates and requests are
  passed in as already decoded mappings, and `FilteredUpdate` values are not
  encoded to bytes.
- `parse_update` always produces fully decoded messages; nothing in the
  package builds messages with `Encoding.LIMITED`, though they can be
  constructed by hand.
- There is no server, client or command line; the package is a library only.

## Running the tests

```
pip install -e ".[test]"
pytest
```