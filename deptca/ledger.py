"""Per-authority certificate ledger.

Text index in openssl ``index.txt`` layout plus ``serial`` and
``crlnumber`` counter files.  All read-modify-write cycles happen under
an exclusive lock on ``<dir>/.lock``.
"""

import fcntl
import logging
import os
import os.path
import re
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from .exceptions import (
    AlreadyRevokedError, LedgerIOError, LockContentionError, NotFoundError,
)
from .files import safe_write
from .formats import format_ledger_time, parse_ledger_time, parse_serial

__all__ = (
    "LedgerEntry", "AuthorityLedger", "FIRST_SERIAL", "FIRST_CRL_NUMBER",
    "STATUS_VALID", "STATUS_REVOKED",
)

log = logging.getLogger(__name__)

FIRST_SERIAL = 1000
FIRST_CRL_NUMBER = 1000

STATUS_VALID = "V"
STATUS_REVOKED = "R"

LOCK_POLL = 0.05

_field_bad_rc = re.compile(r"[\t\r\n]")


class LedgerEntry(NamedTuple):
    """One issued certificate.
    """
    status: str
    expiry: datetime
    serial: int
    path: str
    subject: str
    revoked_at: Optional[datetime] = None
    reason: Optional[str] = None

    @property
    def is_revoked(self) -> bool:
        return self.status == STATUS_REVOKED

    def to_line(self) -> str:
        rev = ""
        if self.is_revoked and self.revoked_at is not None:
            rev = format_ledger_time(self.revoked_at)
            if self.reason:
                rev += "," + self.reason
        fields = [
            self.status, format_ledger_time(self.expiry), rev,
            str(self.serial), self.path, self.subject,
        ]
        for f in fields:
            if _field_bad_rc.search(f):
                raise ValueError("Control character in ledger field: %r" % f)
        return "\t".join(fields)

    @classmethod
    def from_line(cls, line: str) -> "LedgerEntry":
        parts = line.split("\t")
        if len(parts) != 6:
            raise ValueError("expected 6 fields, got %d" % len(parts))
        status, expiry, rev, serial, path, subject = parts
        if status not in (STATUS_VALID, STATUS_REVOKED):
            raise ValueError("bad status %r" % status)
        revoked_at = reason = None
        if status == STATUS_REVOKED:
            if not rev:
                raise ValueError("revoked entry without revocation time")
            if "," in rev:
                rev, reason = rev.split(",", 1)
            revoked_at = parse_ledger_time(rev)
        elif rev:
            raise ValueError("valid entry with revocation time")
        return cls(status=status, expiry=parse_ledger_time(expiry),
                   serial=parse_serial(serial), path=path, subject=subject,
                   revoked_at=revoked_at, reason=reason)


_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _thread_lock(path: str) -> threading.Lock:
    """Process-wide mutex for lock file.
    """
    key = os.path.realpath(path)
    with _path_locks_guard:
        if key not in _path_locks:
            _path_locks[key] = threading.Lock()
        return _path_locks[key]


def _read_counter(fn: str, default: int) -> int:
    if not os.path.isfile(fn):
        return default
    with open(fn, "r", encoding="utf8") as f:
        data = f.read().strip()
    if not data:
        return default
    return parse_serial(data)


class AuthorityLedger:
    """Entries and counters of one authority.
    """
    directory: str
    authority_id: str
    lock_timeout: float

    def __init__(self, directory: str, authority_id: str, lock_timeout: float = 10.0) -> None:
        self.directory = directory
        self.authority_id = authority_id
        self.lock_timeout = lock_timeout
        self.index_path = os.path.join(directory, "index.txt")
        self.serial_path = os.path.join(directory, "serial")
        self.crlnumber_path = os.path.join(directory, "crlnumber")
        self.lock_path = os.path.join(directory, ".lock")
        self._entries: List[LedgerEntry] = []
        self._next_serial = FIRST_SERIAL
        self._next_crl_number = FIRST_CRL_NUMBER
        self._holder: Optional[int] = None
        self._dirty = False

    def __repr__(self) -> str:
        return "<AuthorityLedger %s>" % self.authority_id

    #
    # state on disk
    #

    def exists(self) -> bool:
        return os.path.isfile(self.index_path)

    def initialize(self) -> None:
        """Create empty index and counters, keep existing ones.
        """
        with self.transaction():
            if not self.exists():
                self._dirty = True

    def load(self) -> None:
        """Read index and counters.
        """
        entries: List[LedgerEntry] = []
        try:
            if os.path.isfile(self.index_path):
                with open(self.index_path, "r", encoding="utf8") as f:
                    for lineno, line in enumerate(f, 1):
                        line = line.rstrip("\n")
                        if not line.strip():
                            continue
                        try:
                            entries.append(LedgerEntry.from_line(line))
                        except ValueError as ex:
                            raise LedgerIOError("%s:%d: invalid ledger line: %s" % (
                                self.index_path, lineno, ex), authority=self.authority_id) from None
            next_serial = _read_counter(self.serial_path, FIRST_SERIAL)
            next_crl = _read_counter(self.crlnumber_path, FIRST_CRL_NUMBER)
        except OSError as ex:
            raise LedgerIOError("Cannot read ledger for %s: %s" % (self.authority_id, ex),
                                authority=self.authority_id) from ex
        except ValueError as ex:
            raise LedgerIOError("Bad counter file for %s: %s" % (self.authority_id, ex),
                                authority=self.authority_id) from None

        if entries:
            top = max(e.serial for e in entries) + 1
            if top > next_serial:
                log.warning("%s: serial counter %d behind ledger, using %d",
                            self.authority_id, next_serial, top)
                next_serial = top
        self._entries = entries
        self._next_serial = next_serial
        self._next_crl_number = next_crl
        self._dirty = False

    def persist(self) -> None:
        """Write index, then counters.
        """
        data = "".join(e.to_line() + "\n" for e in self._entries)
        try:
            safe_write(self.index_path, data)
            safe_write(self.serial_path, "%d\n" % self._next_serial)
            safe_write(self.crlnumber_path, "%d\n" % self._next_crl_number)
        except OSError as ex:
            raise LedgerIOError("Cannot write ledger for %s: %s" % (self.authority_id, ex),
                                authority=self.authority_id) from ex
        self._dirty = False
        log.debug("%s: ledger saved, %d entries, next serial %d",
                  self.authority_id, len(self._entries), self._next_serial)

    #
    # locking
    #

    def _locked(self) -> bool:
        return self._holder == threading.get_ident()

    def _acquire(self) -> Tuple[int, threading.Lock]:
        deadline = time.monotonic() + self.lock_timeout
        mutex = _thread_lock(self.lock_path)
        if not mutex.acquire(timeout=max(self.lock_timeout, 0)):
            raise LockContentionError("Ledger of %s is busy" % self.authority_id,
                                      authority=self.authority_id)
        try:
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as ex:
            mutex.release()
            raise LedgerIOError("Cannot open lock file %s: %s" % (self.lock_path, ex),
                                authority=self.authority_id) from ex
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return fd, mutex
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    mutex.release()
                    raise LockContentionError("Ledger of %s is locked by another process" % self.authority_id,
                                              authority=self.authority_id) from None
                time.sleep(LOCK_POLL)

    @contextmanager
    def transaction(self) -> Iterator["AuthorityLedger"]:
        """Exclusive read-modify-write cycle.

        State is reloaded on entry and saved on normal exit.  On exception
        the in-memory state is reset, so allocated numbers are not kept.
        Nested use from the same thread joins the outer transaction.
        """
        if self._locked():
            yield self
            return
        fd, mutex = self._acquire()
        self._holder = threading.get_ident()
        try:
            self.load()
            snapshot = (list(self._entries), self._next_serial, self._next_crl_number)
            try:
                yield self
            except BaseException:
                self._entries, self._next_serial, self._next_crl_number = snapshot
                self._dirty = False
                raise
            if self._dirty:
                self.persist()
        finally:
            self._holder = None
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
            mutex.release()

    #
    # queries
    #

    def entries(self) -> List[LedgerEntry]:
        """All entries in issue order.
        """
        with self.transaction():
            return list(self._entries)

    def get(self, serial: int) -> Optional[LedgerEntry]:
        with self.transaction():
            for e in self._entries:
                if e.serial == serial:
                    return e
        return None

    def find_by_path(self, path: str) -> Optional[LedgerEntry]:
        """Look up entry by recorded certificate path.
        """
        want = os.path.normpath(path)
        with self.transaction():
            for e in reversed(self._entries):
                if os.path.normpath(e.path) == want:
                    return e
        return None

    @property
    def next_serial(self) -> int:
        with self.transaction():
            return self._next_serial

    @property
    def next_crl_number(self) -> int:
        with self.transaction():
            return self._next_crl_number

    #
    # changes
    #

    def allocate_serial(self) -> int:
        """Reserve next serial number.
        """
        with self.transaction():
            serial = self._next_serial
            self._next_serial += 1
            self._dirty = True
            return serial

    def allocate_crl_number(self) -> int:
        """Reserve next CRL number.
        """
        with self.transaction():
            num = self._next_crl_number
            self._next_crl_number += 1
            self._dirty = True
            return num

    def append(self, entry: LedgerEntry) -> int:
        """Record freshly issued certificate, return its serial.
        """
        if entry.status != STATUS_VALID:
            raise ValueError("New ledger entries must have status V")
        entry.to_line()
        with self.transaction():
            if any(e.serial == entry.serial for e in self._entries):
                raise LedgerIOError("Serial %d already recorded" % entry.serial,
                                    authority=self.authority_id, serial=entry.serial)
            self._entries.append(entry)
            if entry.serial >= self._next_serial:
                self._next_serial = entry.serial + 1
            self._dirty = True
        log.debug("%s: recorded serial %d", self.authority_id, entry.serial)
        return entry.serial

    def mark_revoked(self, serial: int, reason: str,
                     when: Optional[datetime] = None) -> LedgerEntry:
        """Move entry from V to R.
        """
        if when is None:
            when = datetime.now(timezone.utc)
        with self.transaction():
            for i, e in enumerate(self._entries):
                if e.serial != serial:
                    continue
                if e.is_revoked:
                    raise AlreadyRevokedError("Serial %d of %s is already revoked" % (serial, self.authority_id),
                                              authority=self.authority_id, serial=serial)
                upd = e._replace(status=STATUS_REVOKED, revoked_at=when, reason=reason)
                self._entries[i] = upd
                self._dirty = True
                return upd
        raise NotFoundError("Serial %d not found in ledger of %s" % (serial, self.authority_id),
                            authority=self.authority_id, serial=serial)
