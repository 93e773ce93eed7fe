"""Read-only views over ledgers.
"""

import os.path
import re
from datetime import datetime, timezone
from typing import Iterable, List, NamedTuple, Optional, Tuple

from .authority import ROLE_ROOT, Authority, Layout
from .exceptions import NotFoundError
from .formats import parse_dn, valid_authority_id
from .ledger import LedgerEntry

__all__ = (
    "VALID", "REVOKED", "EXPIRED", "STATUSES",
    "StatusCounts", "AuthorityInfo", "CertificateRecord",
    "status_of", "aggregate", "list_authorities", "list_certificates",
    "parse_composite_id", "lookup", "global_totals",
)

VALID = "valid"
REVOKED = "revoked"
EXPIRED = "expired"
STATUSES = (VALID, REVOKED, EXPIRED)

_composite_rc = re.compile(r"^([A-Za-z0-9._-]+)-([0-9]+)$")


class StatusCounts(NamedTuple):
    valid: int = 0
    revoked: int = 0
    expired: int = 0

    @property
    def total(self) -> int:
        return self.valid + self.revoked + self.expired

    def plus(self, other: "StatusCounts") -> "StatusCounts":
        return StatusCounts(self.valid + other.valid, self.revoked + other.revoked,
                            self.expired + other.expired)


class AuthorityInfo(NamedTuple):
    id: str
    role: str
    state: str
    integrity: str
    path: str
    counts: Optional[StatusCounts]


class CertificateRecord(NamedTuple):
    """Ledger entry with derived status.
    """
    id: str
    authority: str
    serial: int
    status: str
    expiry: datetime
    common_name: str
    subject: str
    cert_path: str
    revoked_at: Optional[datetime] = None
    reason: Optional[str] = None


def status_of(entry: LedgerEntry, now: Optional[datetime] = None) -> str:
    """Revocation wins over expiry.  Valid up to and including the expiry instant.
    """
    if entry.is_revoked:
        return REVOKED
    if now is None:
        now = datetime.now(timezone.utc)
    if now > entry.expiry:
        return EXPIRED
    return VALID


def _count(entries: Iterable[LedgerEntry], now: datetime) -> StatusCounts:
    valid = revoked = expired = 0
    for e in entries:
        st = status_of(e, now)
        if st == VALID:
            valid += 1
        elif st == REVOKED:
            revoked += 1
        else:
            expired += 1
    return StatusCounts(valid, revoked, expired)


def aggregate(authority: Authority, now: Optional[datetime] = None) -> StatusCounts:
    """Count entries of authority by status.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if not authority.ledger.exists():
        return StatusCounts()
    return _count(authority.ledger.entries(), now)


def list_authorities(layout: Layout, with_counts: bool = True,
                     now: Optional[datetime] = None) -> List[AuthorityInfo]:
    """Root, working departments, then archived ones.
    """
    res = []
    auths: List[Authority] = []
    root = layout.root()
    if root.exists():
        auths.append(root)
    auths.extend(layout.departments())
    for auth in auths:
        counts = aggregate(auth, now) if with_counts else None
        res.append(AuthorityInfo(auth.id, auth.role, auth.state, auth.integrity,
                                 auth.directory, counts))
    for auth in layout.archived():
        res.append(AuthorityInfo(auth.id, auth.role, auth.state, auth.integrity,
                                 auth.directory, None))
    return res


def _common_name(subject: str) -> str:
    try:
        pairs = parse_dn(subject)
    except ValueError:
        return "unknown"
    for k, v in reversed(pairs):
        if k == "CN":
            return v
    return "unknown"


def _record(auth: Authority, e: LedgerEntry, now: datetime) -> CertificateRecord:
    path = auth.layout.abspath(e.path)
    if not os.path.isfile(path):
        alt = os.path.join(auth.newcerts_dir, "%d.pem" % e.serial)
        if os.path.isfile(alt):
            path = alt
    return CertificateRecord(id="%s-%d" % (auth.id, e.serial), authority=auth.id,
                             serial=e.serial, status=status_of(e, now), expiry=e.expiry,
                             common_name=_common_name(e.subject), subject=e.subject,
                             cert_path=path, revoked_at=e.revoked_at, reason=e.reason)


def list_certificates(layout: Layout, dept: Optional[str] = None,
                      status: Optional[str] = None,
                      now: Optional[datetime] = None) -> List[CertificateRecord]:
    """Certificates of departments in working tree, optionally filtered.

    Root ledger is included only when asked for by id.
    """
    if status is not None and status not in STATUSES:
        raise ValueError("Unknown status filter: %s" % status)
    if now is None:
        now = datetime.now(timezone.utc)
    if dept:
        auths = [layout.authority(dept)]
    else:
        auths = layout.departments()
    res = []
    for auth in auths:
        if not auth.ledger.exists():
            continue
        for e in auth.ledger.entries():
            rec = _record(auth, e, now)
            if status is None or rec.status == status:
                res.append(rec)
    return res


def parse_composite_id(text: str) -> Tuple[str, int]:
    """Split <authority>-<serial>.
    """
    m = _composite_rc.match(text.strip())
    if not m or not valid_authority_id(m.group(1)):
        raise ValueError("Invalid certificate id: %r (expect <authority>-<serial>)" % text)
    return m.group(1), int(m.group(2))


def lookup(layout: Layout, composite_id: str,
           now: Optional[datetime] = None) -> CertificateRecord:
    """Find certificate by composite id.
    """
    auth_id, serial = parse_composite_id(composite_id)
    auth = layout.authority(auth_id)
    entry = auth.ledger.get(serial)
    if entry is None:
        raise NotFoundError("Certificate %s not found" % composite_id, authority=auth_id, serial=serial)
    if now is None:
        now = datetime.now(timezone.utc)
    return _record(auth, entry, now)


def global_totals(infos: Iterable[AuthorityInfo], include_root: bool = False) -> StatusCounts:
    """Sum counts over listed authorities.
    """
    total = StatusCounts()
    for info in infos:
        if info.counts is None:
            continue
        if info.role == ROLE_ROOT and not include_root:
            continue
        total = total.plus(info.counts)
    return total
