# kadnode

Building blocks for resolving names through a Kademlia distributed hash
table. The package turns queries such as `<hash>.p2p` into 20-byte
identifiers, keeps track of the searches started for them and of the
addresses found, imports and exports peer lists, and drives sockets
through a small poll-based event loop.

## Modules

- `kadnode.utils`: Crockford-style base32 and base16 codecs, query
  sanitising (`query_sanitize`), address parsing and formatting
  (`Address`, `parse_address`), `format_bytes`, `format_duration`,
  `format_id` and related helpers.
- `kadnode.log`: `Logger` with `Verbosity` levels. Errors go to stderr,
  other messages to stdout, or everything to syslog.
- `kadnode.searches`: `SearchRegistry` holding `Search` objects and
  their `Result` addresses, each with an `AuthState`; `parse_query` and
  `parse_plain_id`.
- `kadnode.net`: `EventLoop` for socket handlers, `create_socket` and
  `bind_socket`. Failures raise `NetError`.
- `kadnode.kad`: DHT helpers. It has `TrafficCounter`, `dht_hash`,
  `decode_values` for compact peer values, `to_address`, `format_peer`,
  and `add_isolation_prefix` / `strip_isolation_prefix`.
- `kadnode.peerfile`: `PeerFile`. While no nodes are known it pings
  peers from a file or from static entries, and it writes good nodes back
  to the file.
- `kadnode.unix`: `RunState`, `install_signal_handlers`,
  `create_unix_socket` / `remove_unix_socket`, `write_pidfile`,
  `daemonize` and `drop_privileges`.

## Identifiers

Node and search identifiers are 20 bytes long. In queries they are
written in base32 or in base16. Base32 uses 32 lower-case characters and
leaves out the letters i, l, o and u. Base16 uses 40 characters.

```python
from kadnode.utils import base16_encode, base32_decode, base32_encode

node_id = bytes.fromhex("2149f27dec0e238db312a4d0be36b68f14a2d822")

base32_encode(node_id)   # '454z4zfc1rhrvcrjmk8bwdnphwaa5p12'
base16_encode(node_id)   # '2149f27dec0e238db312a4d0be36b68f14a2d822'
base32_decode("454z4zfc1rhrvcrjmk8bwdnphwaa5p12", 20) == node_id  # True
```

The decoders raise `ValueError` in two cases: the text holds a character
outside the alphabet, or the result would not fit in the given size.

## Searches

```python
from kadnode.searches import SearchRegistry

registry = SearchRegistry()
search = registry.start("454z4zfc1rhrvcrjmk8bwdnphwaa5p12.p2p", now=0)
```

The query is lower-cased and the `.p2p` suffix is removed. `start`
raises `ValueError` for a query that cannot be turned into an
identifier.

Starting the same identifier again returns the existing search. Once
more than half of the twenty-minute search lifetime has passed, the
search is restarted:

- results in the `ERROR`, `AGAIN` or `FAILED` state are dropped
- `OK` results become `AGAIN`
- `SKIP` results become `WAITING`

`registry.add_address(search, address)` adds an address found by the
DHT. It ignores the address in three cases: the search is done, the host
is already listed, or the result list is full. A search without an
authentication callback marks its results `OK` straight away. A search
with a callback marks them `WAITING` and calls the callback.
`set_auth_state` with `AuthState.OK` marks the search done and skips the
other waiting results.

## Formatting helpers

```python
from kadnode.utils import format_bytes, format_duration

format_bytes(1500)      # '1.5 K'
format_duration(3700)   # '1h1m'
```

## What this package does not do

The package does not implement the DHT protocol itself. It has no routing
table, no message handling and no node pinging. Components such as
`PeerFile` take these as callables (`ping`, `count_nodes`,
`export_peers`). There is also:

- no command-line program or daemon entry point
- no DNS or name-service front end
- no TLS or public-key authentication of results

Callers supply authentication through the `auth_callbacks` and
`id_parsers` arguments of `SearchRegistry`.

## Tests

The tests use pytest, which comes with the `test` extra:

```
pip install .[test]
pytest
```