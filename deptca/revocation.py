"""Certificate and department revocation, CRL generation.
"""

import logging
import os
import os.path
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set, Union

from cryptography import x509

from .authority import Authority
from .config import Config
from .engine import RevokedItem, SigningEngine, crl_serials, parse_reason
from .exceptions import (
    AlreadyRevokedError, LedgerIOError, MissingRootError, NotFoundError,
)
from .files import ensure_dirs, load_cert, load_crl, write_pem
from .formats import parse_serial
from .ledger import LedgerEntry
from .objects import get_utc_datetime, subject_string

__all__ = (
    "revoke_certificate", "regenerate_crl", "crl_is_stale", "revoke_department",
    "revoked_items", "DEFAULT_REASON", "CASCADE_REASON",
)

log = logging.getLogger(__name__)

DEFAULT_REASON = "keyCompromise"
CASCADE_REASON = "cessationOfOperation"

AuthorityRef = Union[str, Authority]


def _authority(config: Config, auth: AuthorityRef) -> Authority:
    if isinstance(auth, Authority):
        return auth
    return config.layout().authority(auth)


def revoked_items(entries: Iterable[LedgerEntry]) -> List[RevokedItem]:
    """CRL content for ledger entries.
    """
    res = []
    for e in entries:
        if e.is_revoked:
            when = e.revoked_at or datetime.now(timezone.utc)
            res.append(RevokedItem(e.serial, when, e.reason or "unspecified"))
    return res


def crl_is_stale(authority: Authority, now: Optional[datetime] = None) -> bool:
    """CRL missing, expired or not matching revoked set of ledger.
    """
    if not os.path.isfile(authority.crl_path):
        return True
    if now is None:
        now = datetime.now(timezone.utc)
    crl = load_crl(authority.crl_path)
    next_update = get_utc_datetime(crl, "next_update")
    if next_update is not None and next_update <= now:
        return True
    want: Set[int] = {e.serial for e in authority.ledger.entries() if e.is_revoked}
    return set(crl_serials(crl)) != want


def regenerate_crl(config: Config, authority: AuthorityRef,
                   engine: Optional[SigningEngine] = None,
                   force: bool = True) -> Optional[x509.CertificateRevocationList]:
    """Sign full CRL with next CRL number and write it.

    With force=False nothing happens when the current CRL is up to date.
    """
    auth = _authority(config, authority)
    if engine is None:
        engine = config.engine()
    key = auth.load_key()
    cert = auth.load_cert()
    with auth.ledger.transaction() as ledger:
        if not force and not crl_is_stale(auth):
            return None
        items = revoked_items(ledger.entries())
        num = ledger.allocate_crl_number()
        crl = engine.sign_crl(key, cert, items, num, config.crl_days)
        ensure_dirs(os.path.dirname(auth.crl_path))
        write_pem(auth.crl_path, crl)
    log.info("%s: CRL %d written, %d revoked", auth.id, num, len(items))
    return crl


def _issued_serial(auth: Authority, cert: x509.Certificate, path: str) -> int:
    """Serial of certificate file, when this authority issued it.
    """
    serial = cert.serial_number
    if cert.issuer != auth.load_cert().subject:
        raise NotFoundError("%s was not issued by %s" % (path, auth.id), authority=auth.id, serial=serial)
    entry = auth.ledger.get(serial)
    if entry is None or entry.subject != subject_string(cert.subject):
        raise NotFoundError("%s does not match serial %d in ledger of %s" % (path, serial, auth.id),
                            authority=auth.id, serial=serial)
    return serial


def _resolve_serial(auth: Authority, serial_or_path: Union[int, str]) -> int:
    if isinstance(serial_or_path, int):
        return serial_or_path
    try:
        return parse_serial(serial_or_path)
    except ValueError:
        pass
    path = serial_or_path
    if os.path.isfile(path):
        try:
            cert = load_cert(path)
        except ValueError:
            log.debug("%s: not a certificate, looking up ledger path", path)
        else:
            return _issued_serial(auth, cert, path)

    layout = auth.layout
    for cand in (path, layout.relpath(path)):
        entry = auth.ledger.find_by_path(cand)
        if entry is not None:
            return entry.serial
    raise NotFoundError("No certificate %s in ledger of %s" % (path, auth.id), authority=auth.id)


def revoke_certificate(config: Config, authority: AuthorityRef,
                       serial_or_path: Union[int, str],
                       reason: Optional[str] = DEFAULT_REASON,
                       engine: Optional[SigningEngine] = None) -> LedgerEntry:
    """Revoke one certificate and regenerate CRL.

    Already revoked serial gives AlreadyRevokedError, after the CRL has
    been rewritten if it did not match the ledger.
    """
    reason = parse_reason(reason)
    auth = _authority(config, authority)
    serial = _resolve_serial(auth, serial_or_path)
    try:
        with auth.ledger.transaction() as ledger:
            entry = ledger.mark_revoked(serial, reason)
            regenerate_crl(config, auth, engine)
    except AlreadyRevokedError:
        log.warning("%s: serial %d already revoked", auth.id, serial)
        regenerate_crl(config, auth, engine, force=False)
        raise
    log.info("%s: revoked serial %d (%s)", auth.id, serial, reason)
    return entry


def revoke_department(config: Config, dept_id: str,
                      reason: Optional[str] = CASCADE_REASON,
                      engine: Optional[SigningEngine] = None) -> str:
    """Revoke everything under department, then archive it.

    Returns the archive directory.  Safe to re-run after partial failure.
    """
    reason = parse_reason(reason)
    layout = config.layout()
    dept = layout.department(dept_id)
    root = layout.root()
    if not root.has_cert():
        raise MissingRootError("Root certificate not found: %s" % root.cert_path, authority=root.id)
    if engine is None:
        engine = config.engine()

    with dept.ledger.transaction() as ledger:
        count = 0
        for e in ledger.entries():
            if e.is_revoked:
                continue
            ledger.mark_revoked(e.serial, reason)
            ledger.persist()
            count += 1
        log.info("%s: revoked %d certificates", dept.id, count)

        if count or crl_is_stale(dept):
            if dept.has_key() and dept.has_cert():
                regenerate_crl(config, dept, engine)
                ledger.persist()
            else:
                log.warning("%s: key or certificate missing, CRL not regenerated", dept.id)

        entry = dept.parent_entry()
        root_changed = False
        if entry is None:
            log.warning("%s: no entry in root ledger", dept.id)
        elif entry.is_revoked:
            log.info("%s: already revoked in root ledger", dept.id)
        else:
            root.ledger.mark_revoked(entry.serial, reason)
            root_changed = True
        if root_changed or crl_is_stale(root):
            regenerate_crl(config, root, engine)

        dest = layout.archive_path(dept.id)
        try:
            ensure_dirs(layout.recycle_dir)
            os.rename(dept.directory, dest)
        except OSError as ex:
            raise LedgerIOError("Cannot archive %s: %s" % (dept.id, ex), authority=dept.id) from ex
    log.info("%s: archived to %s", dept.id, dest)
    return dest
