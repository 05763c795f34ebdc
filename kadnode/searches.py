"""Collected results of identifier searches and their authentication state.

The DHT itself does not keep the addresses it finds for a searched
identifier, so they are gathered here together with the state of their
verification.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Iterator, Mapping, Optional, Sequence, TextIO

from .log import Logger
from .utils import (
    ID_BINARY_LENGTH,
    QUERY_MAX_SIZE,
    QUERY_TLD_DEFAULT,
    Address,
    base16_decode,
    base16_decoded_size,
    base32_decode,
    base32_decoded_size,
    format_id,
    parse_int,
    port_valid,
    query_sanitize,
)

# Expected lifetime of announcements
MAX_SEARCH_LIFETIME = 20 * 60
MAX_RESULTS_PER_SEARCH = 16

AuthCallback = Callable[[], None]
IdParser = Callable[[str], Optional[bytes]]


class AuthState(Enum):
    OK = "OK"  # authentication successful or not needed
    AGAIN = "AGAIN"  # was successful, but needs to be retested
    FAILED = "FAILED"  # verification failed
    ERROR = "ERROR"  # no reply
    SKIP = "SKIP"  # skipped, only one result needed
    PROGRESS = "PROGRESS"  # in progress
    WAITING = "WAITING"  # not yet started


class QueryType(Enum):
    INVALID = 0
    TLS = 1
    BOB = 2
    NONE = 3


_AUTH_NAMES = {QueryType.TLS: "tls", QueryType.BOB: "bob"}


@dataclass(eq=False)
class Result:
    """An address found while searching an identifier."""

    address: Address
    state: AuthState

    def is_valid(self) -> bool:
        return self.state in (AuthState.OK, AuthState.AGAIN)


@dataclass(eq=False)
class Search:
    """A search for an identifier and the addresses found so far."""

    id: bytes
    query: str
    query_type: QueryType
    start_time: int
    auth_callback: Optional[AuthCallback] = None
    done: bool = False
    results: list[Result] = field(default_factory=list)

    @property
    def auth_name(self) -> str:
        if self.auth_callback is None:
            return "none"
        return _AUTH_NAMES.get(self.query_type, "???")


def parse_plain_id(query: str) -> Optional[bytes]:
    """Decode a 20 byte identifier given in base16 or base32."""
    if base16_decoded_size(len(query)) == ID_BINARY_LENGTH:
        try:
            return base16_decode(query, ID_BINARY_LENGTH)
        except ValueError:
            pass
    if base32_decoded_size(len(query)) == ID_BINARY_LENGTH:
        try:
            return base32_decode(query, ID_BINARY_LENGTH)
        except ValueError:
            pass
    return None


def parse_query(
    query: str,
    tld: str = QUERY_TLD_DEFAULT,
    allow_port: bool = False,
    id_parsers: Iterable[tuple[QueryType, IdParser]] = (),
) -> tuple[QueryType, bytes, str, Optional[int]]:
    """Parse a query into (type, identifier, sanitized query, port).

    The id parsers are tried in order before the plain base16/base32 form.
    Raises ValueError for a query that cannot be used.
    """
    text = query
    port: Optional[int] = None
    colon = query.find(":")
    if colon >= 0:
        port = parse_int(query[colon + 1:], -1)
        if not port_valid(port) or not allow_port:
            raise ValueError(f"invalid or unexpected port in query {query!r}")
        text = query[:colon]

    try:
        squery = query_sanitize(text, tld, QUERY_MAX_SIZE)
    except ValueError as exc:
        raise ValueError(f"invalid query {query!r}: {exc}") from exc

    for query_type, parser in id_parsers:
        ident = parser(squery)
        if ident is not None:
            return query_type, ident, squery, port

    ident = parse_plain_id(squery)
    if ident is None:
        raise ValueError(f"no method to resolve query {query!r}")
    return QueryType.NONE, ident, squery, port


class SearchRegistry:
    """All running searches, newest first."""

    def __init__(
        self,
        tld: str = QUERY_TLD_DEFAULT,
        id_parsers: Sequence[tuple[QueryType, IdParser]] = (),
        auth_callbacks: Optional[Mapping[QueryType, AuthCallback]] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.tld = tld
        self.id_parsers = tuple(id_parsers)
        self.auth_callbacks = dict(auth_callbacks or {})
        self.logger = logger if logger is not None else Logger()
        self._searches: list[Search] = []

    def __iter__(self) -> Iterator[Search]:
        return iter(self._searches)

    def __len__(self) -> int:
        return len(self._searches)

    def find_by_id(self, search_id: bytes) -> Optional[Search]:
        return next((s for s in self._searches if s.id == search_id), None)

    def find_by_query(self, query: str) -> Optional[Search]:
        return next((s for s in self._searches if s.query == query), None)

    def remove_by_id(self, search_id: bytes) -> None:
        search = self.find_by_id(search_id)
        if search is not None:
            self._searches.remove(search)

    def get_auth_target(self, callback: AuthCallback) -> Optional[tuple[str, Result]]:
        """Return the next (query, result) waiting for authentication by callback."""
        search = next(
            (s for s in self._searches if not s.done and s.auth_callback == callback),
            None,
        )
        if search is None:
            return None
        result = next(
            (r for r in search.results if r.state in (AuthState.WAITING, AuthState.AGAIN)),
            None,
        )
        if result is None:
            return None
        return search.query, result

    def set_auth_state(self, query: str, address: Address, state: AuthState) -> None:
        self.logger.debug(
            f"Set authentication state for {address} ({query}): {state.value}"
        )
        search = self.find_by_query(query)
        if search is None:
            return

        result = next((r for r in search.results if r.address.same_host(address)), None)
        if result is not None:
            result.state = state

        # One good result is enough, skip the others
        if state is AuthState.OK:
            search.done = True
            for other in search.results:
                if other.state is AuthState.WAITING:
                    other.state = AuthState.SKIP

    def _restart(self, search: Search, now: int) -> None:
        self.logger.debug(f"Restart search for query: {search.query}")
        search.start_time = now
        search.done = False

        kept = []
        for result in search.results:
            if result.state in (AuthState.ERROR, AuthState.AGAIN, AuthState.FAILED):
                continue
            if result.state is AuthState.OK:
                result.state = AuthState.AGAIN
            elif result.state is AuthState.SKIP:
                result.state = AuthState.WAITING
            kept.append(result)
        search.results = kept

    def start(self, query: str, now: int) -> Search:
        """Find or create the search for a query; raises ValueError if unusable."""
        try:
            query_type, ident, squery, _ = parse_query(
                query, self.tld, False, self.id_parsers
            )
        except ValueError:
            self.logger.debug(f"No idea how what method to use for {query}")
            raise

        search = self.find_by_id(ident)
        if search is not None:
            # Restart search after half of search lifetime
            if now - search.start_time > MAX_SEARCH_LIFETIME // 2:
                self._restart(search, now)
            return search

        callback = None if query_type is QueryType.NONE else self.auth_callbacks.get(query_type)
        search = Search(
            id=ident,
            query=squery,
            query_type=query_type,
            start_time=now,
            auth_callback=callback,
        )
        self.logger.debug(f"Create new search for query: {squery}")
        self._searches.insert(0, search)
        return search

    def add_address(self, search: Search, address: Address) -> None:
        """Add a found address and trigger authentication if needed."""
        if search.done:
            return

        for count, result in enumerate(search.results):
            if result.address.same_host(address):
                return
            if count > MAX_RESULTS_PER_SEARCH:
                return

        state = AuthState.WAITING if search.auth_callback else AuthState.OK
        search.results.append(Result(address, state))

        if search.auth_callback:
            search.auth_callback()

    def debug(self, fp: TextIO, now: int) -> None:
        fp.write("Searches:\n")
        for search in self._searches:
            done = "true" if search.done else "false"
            minutes = int((now - search.start_time) / 60)
            fp.write(f" query: {search.query}\n")
            fp.write(f"   id: {format_id(search.id)}\n")
            fp.write(f"   auth: {search.auth_name} (done: {done})\n")
            fp.write(f"   started: {minutes}m ago\n")
            for result in search.results:
                fp.write(f"    addr: {result.address}\n")
                fp.write(f"      state: {result.state.value}\n")
            fp.write(f"   Found {len(search.results)} results.\n")
        fp.write(f" Found {len(self._searches)} searches.\n")

    def clear(self) -> None:
        self._searches.clear()