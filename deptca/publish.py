"""Trust bundle and CRL publishing.
"""

import logging
import os
import os.path
from typing import List, NamedTuple

from .authority import STATE_ACTIVE, STATE_ARCHIVED, Layout
from .exceptions import MissingRootError
from .files import ensure_dirs, safe_write

__all__ = ("PublishResult", "publish")

log = logging.getLogger(__name__)

CRL_SUFFIX = ".crl.pem"


class PublishResult(NamedTuple):
    ca_bundle: str
    crl_bundle: str
    crl_dir: str
    certificates: List[str]
    crls: List[str]
    skipped: List[str]
    removed: List[str]


def _read_pem(fn: str) -> str:
    with open(fn, "r", encoding="utf8") as f:
        data = f.read()
    if not data.endswith("\n"):
        data += "\n"
    return data


def _remove_stale_crls(crl_dir: str, keep: List[str]) -> List[str]:
    removed = []
    for fn in sorted(os.listdir(crl_dir)):
        if not fn.endswith(CRL_SUFFIX):
            continue
        auth_id = fn[:-len(CRL_SUFFIX)]
        if auth_id in keep:
            continue
        os.unlink(os.path.join(crl_dir, fn))
        log.info("%s: stale CRL removed from %s", auth_id, crl_dir)
        removed.append(auth_id)
    return removed


def publish(layout: Layout, public_dir: str) -> PublishResult:
    """Write ca-bundle.pem, crl-bundle.pem and crl/<id>.crl.pem.

    Root comes first, then active departments in directory order.
    Revoked departments keep their CRL published but leave ca-bundle.
    Departments without certificate are skipped.  CRL files of
    authorities no longer published are removed.
    """
    root = layout.root()
    if not root.has_cert():
        raise MissingRootError("Root certificate not found: %s" % root.cert_path, authority=root.id)

    certs: List[str] = []
    crls: List[str] = []
    skipped: List[str] = []
    cert_parts = [_read_pem(root.cert_path)]
    certs.append(root.id)
    crl_parts = []
    crl_files = {}
    if os.path.isfile(root.crl_path):
        crl_files[root.id] = _read_pem(root.crl_path)
    else:
        log.warning("root: CRL not found: %s", root.crl_path)

    for dept in layout.departments():
        state = dept.state
        if state == STATE_ARCHIVED:
            log.info("%s: archived, skipped", dept.id)
            continue
        if state != STATE_ACTIVE:
            log.info("%s: %s, only CRL published", dept.id, state)
        elif not dept.has_cert():
            log.warning("%s: certificate not found, skipped", dept.id)
            skipped.append(dept.id)
            continue
        else:
            cert_parts.append(_read_pem(dept.cert_path))
            certs.append(dept.id)
        if os.path.isfile(dept.crl_path):
            crl_files[dept.id] = _read_pem(dept.crl_path)
        else:
            log.warning("%s: CRL not found: %s", dept.id, dept.crl_path)

    crl_dir = os.path.join(public_dir, "crl")
    ensure_dirs(public_dir, crl_dir)
    ca_bundle = os.path.join(public_dir, "ca-bundle.pem")
    crl_bundle = os.path.join(public_dir, "crl-bundle.pem")
    for auth_id, data in crl_files.items():
        safe_write(os.path.join(crl_dir, auth_id + CRL_SUFFIX), data)
        crl_parts.append(data)
        crls.append(auth_id)
    safe_write(ca_bundle, "".join(cert_parts))
    safe_write(crl_bundle, "".join(crl_parts))
    removed = _remove_stale_crls(crl_dir, crls)
    log.info("published %d certificates and %d CRLs to %s", len(certs), len(crls), public_dir)
    return PublishResult(ca_bundle=ca_bundle, crl_bundle=crl_bundle, crl_dir=crl_dir,
                         certificates=certs, crls=crls, skipped=skipped,
                         removed=removed)
