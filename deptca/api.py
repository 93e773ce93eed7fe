"""Public API
"""

# pylint: disable=unused-import

from . import FULL_VERSION
from .authority import (
    INTEGRITY_ARCHIVED, INTEGRITY_BROKEN, INTEGRITY_OK, ROLE_DEPARTMENT,
    ROLE_ROOT, ROOT_ID, STATE_ACTIVE, STATE_ARCHIVED, STATE_REVOKED,
    Authority, Layout,
)
from .config import CONFIG_ENV, Config, load_config
from .engine import (
    CRL_REASON, DEPT_DAYS, LEAF_DAYS, ROOT_DAYS, RevokedItem, SigningEngine,
    crl_number, crl_serials, parse_reason,
)
from .exceptions import (
    AlreadyRevokedError, InactiveAuthorityError, InvalidCSRError,
    InvalidReasonError, InvalidSANError, LedgerIOError, LockContentionError,
    MissingRootError, NotFoundError, PKIError, UnknownProfileError,
)
from .files import load_cert, load_crl, load_key, load_req
from .formats import parse_dn, render_dn, render_expiry
from .issuance import (
    GeneratedRequest, IssuedCertificate, bootstrap_root, create_csr,
    create_department, issue_from_csr, issue_new,
)
from .ledger import FIRST_CRL_NUMBER, FIRST_SERIAL, AuthorityLedger, LedgerEntry
from .objects import extract_gnames, serialize
from .profiles import DEFAULT_PROFILE, PROFILES, ExtensionSet, merge_sans, resolve
from .publish import PublishResult, publish
from .query import (
    EXPIRED, REVOKED, VALID, AuthorityInfo, CertificateRecord, StatusCounts,
    aggregate, global_totals, list_authorities, list_certificates, lookup,
    parse_composite_id, status_of,
)
from .revocation import (
    CASCADE_REASON, DEFAULT_REASON, crl_is_stale, regenerate_crl,
    revoke_certificate, revoke_department,
)

__all__ = (
    "FULL_VERSION", "CRL_REASON", "CONFIG_ENV",
    "ROOT_ID", "ROLE_ROOT", "ROLE_DEPARTMENT",
    "STATE_ACTIVE", "STATE_REVOKED", "STATE_ARCHIVED",
    "INTEGRITY_OK", "INTEGRITY_BROKEN", "INTEGRITY_ARCHIVED",
    "LEAF_DAYS", "DEPT_DAYS", "ROOT_DAYS", "FIRST_SERIAL", "FIRST_CRL_NUMBER",
    "DEFAULT_PROFILE", "PROFILES", "DEFAULT_REASON", "CASCADE_REASON",
    "VALID", "REVOKED", "EXPIRED",
    "Authority", "Layout", "Config", "load_config",
    "SigningEngine", "RevokedItem", "parse_reason", "crl_number", "crl_serials",
    "PKIError", "UnknownProfileError", "InvalidSANError", "InvalidCSRError",
    "InvalidReasonError", "NotFoundError", "AlreadyRevokedError",
    "InactiveAuthorityError", "MissingRootError", "LedgerIOError",
    "LockContentionError",
    "load_cert", "load_crl", "load_key", "load_req",
    "parse_dn", "render_dn", "render_expiry", "extract_gnames", "serialize",
    "IssuedCertificate", "GeneratedRequest",
    "bootstrap_root", "create_department", "issue_new", "issue_from_csr", "create_csr",
    "AuthorityLedger", "LedgerEntry",
    "ExtensionSet", "resolve", "merge_sans",
    "PublishResult", "publish",
    "StatusCounts", "AuthorityInfo", "CertificateRecord",
    "status_of", "aggregate", "list_authorities", "list_certificates",
    "parse_composite_id", "lookup", "global_totals",
    "regenerate_crl", "crl_is_stale", "revoke_certificate", "revoke_department",
)
