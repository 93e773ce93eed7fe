"""Root bootstrap, department creation and leaf issuance.
"""

import logging
import os
import os.path
from contextlib import contextmanager
from typing import Iterator, NamedTuple, Optional, Sequence, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from .authority import ROOT_ID, STATE_ACTIVE, Authority
from .config import Config
from .engine import SigningEngine
from .exceptions import InactiveAuthorityError, InvalidCSRError, MissingRootError, PKIError
from .files import ensure_dirs, load_req_data, safe_write, write_pem
from .formats import file_stamp, safe_name, valid_authority_id
from .keys import get_key_name, same_pubkey
from .ledger import STATUS_VALID, LedgerEntry
from .objects import common_name, get_utc_datetime, make_name, serialize, subject_string
from .profiles import ExtensionSet, ca_extensions, csr_sans, merge_sans, resolve
from .revocation import regenerate_crl

__all__ = (
    "IssuedCertificate", "GeneratedRequest",
    "bootstrap_root", "create_department", "issue_new", "issue_from_csr", "create_csr",
)

log = logging.getLogger(__name__)

AuthorityRef = Union[str, Authority]


class IssuedCertificate(NamedTuple):
    """Result of successful issuance.
    """
    authority: str
    serial: int
    profile: str
    certificate: x509.Certificate
    cert_path: str
    fullchain_path: str
    key: Optional[rsa.RSAPrivateKey] = None
    key_path: Optional[str] = None
    csr_path: Optional[str] = None

    @property
    def composite_id(self) -> str:
        return "%s-%d" % (self.authority, self.serial)


class GeneratedRequest(NamedTuple):
    key: rsa.RSAPrivateKey
    request: x509.CertificateSigningRequest
    key_path: str
    csr_path: str


def _authority(config: Config, auth: AuthorityRef) -> Authority:
    if isinstance(auth, Authority):
        return auth
    return config.layout().authority(auth)


def _require_active(auth: Authority) -> None:
    if not auth.exists():
        raise InactiveAuthorityError("Authority %s does not exist" % auth.id, authority=auth.id)
    state = auth.state
    if state != STATE_ACTIVE:
        raise InactiveAuthorityError("Authority %s is %s" % (auth.id, state), authority=auth.id)


_ARTIFACT_SUFFIXES = (".key.pem", ".csr.pem", ".cert.pem", ".fullchain.pem")


def _artifact_base(directory: str, common_name_value: str, fallback: str = "cert",
                   reserve: str = ".cert.pem") -> str:
    """Unused base path for <name>.{key,csr,cert,fullchain}.pem files.

    The <base><reserve> file is created empty with O_EXCL, so concurrent
    callers never get the same base.
    """
    name = safe_name(common_name_value) or fallback
    base = os.path.join(directory, "%s__%s" % (name, file_stamp(fine=True)))
    mode = 0o600 if reserve == ".key.pem" else 0o644
    cand = base
    n = 1
    while True:
        if not any(os.path.exists(cand + sfx) for sfx in _ARTIFACT_SUFFIXES):
            try:
                fd = os.open(cand + reserve, os.O_CREAT | os.O_EXCL | os.O_WRONLY, mode)
            except FileExistsError:
                pass
            else:
                os.close(fd)
                return cand
        cand = "%s_%d" % (base, n)
        n += 1


@contextmanager
def _reserved_base(directory: str, common_name_value: str, reserve: str = ".cert.pem") -> Iterator[str]:
    """Reserve artifact base, drop unfinished outputs on failure.
    """
    base = _artifact_base(directory, common_name_value, reserve=reserve)
    try:
        yield base
    except BaseException:
        placeholder = base + reserve
        if os.path.isfile(placeholder) and os.path.getsize(placeholder) == 0:
            os.unlink(placeholder)
        for sfx in (".cert.pem", ".fullchain.pem"):
            if os.path.isfile(base + sfx):
                os.unlink(base + sfx)
        raise


def _make_private_dir(path: str) -> None:
    ensure_dirs(path, mode=0o700)
    os.chmod(path, 0o700)


def _init_authority_tree(auth: Authority) -> None:
    ensure_dirs(auth.directory, *auth.subdirs())
    _make_private_dir(os.path.dirname(auth.key_path))
    auth.ledger.initialize()


def bootstrap_root(config: Config, engine: Optional[SigningEngine] = None) -> Authority:
    """Create root authority, keeping whatever already exists.
    """
    if engine is None:
        engine = config.engine()
    root = config.layout().root()
    _init_authority_tree(root)

    if root.has_key():
        key = root.load_key()
    else:
        key = engine.generate_key()
        write_pem(root.key_path, key)
        log.info("root: new %s key %s", get_key_name(key), root.key_path)

    if root.has_cert():
        if not same_pubkey(key, root.load_cert()):
            raise PKIError("Root key does not match certificate %s" % root.cert_path, authority=root.id)
    else:
        subject = make_name(config.subject_for(None, config.root_common_name))
        cert = engine.self_sign(key, subject, config.root_days, x509.random_serial_number())
        write_pem(root.cert_path, cert)
        log.info("root: self-signed certificate %s", root.cert_path)

    if not os.path.isfile(root.crl_path):
        regenerate_crl(config, root, engine)
    return root


def create_department(config: Config, dept_id: str,
                      engine: Optional[SigningEngine] = None) -> Authority:
    """New department CA signed by root.
    """
    if not valid_authority_id(dept_id) or dept_id == ROOT_ID:
        raise ValueError("Invalid department id: %r (use letters, digits, '.', '_', '-')" % (dept_id,))
    if engine is None:
        engine = config.engine()
    layout = config.layout()
    root = layout.root()
    if not root.has_cert():
        raise MissingRootError("Root certificate not found: %s, run bootstrap first" % root.cert_path,
                               authority=root.id)
    dept = layout.department(dept_id, must_exist=False)
    if dept.exists():
        raise PKIError("Department %s already exists" % dept_id, authority=dept_id)
    if any(a.id == dept_id for a in layout.archived()):
        raise PKIError("Department %s was archived, pick another name" % dept_id, authority=dept_id)

    root_key = root.load_key()
    root_cert = root.load_cert()

    _init_authority_tree(dept)
    key = engine.generate_key()
    write_pem(dept.key_path, key)
    req = engine.build_csr(key, make_name(config.subject_for(dept_id, "%s Intermediate CA" % dept_id)))
    write_pem(dept.csr_path, req)

    with root.ledger.transaction() as ledger:
        serial = ledger.allocate_serial()
        cert = engine.sign(root_key, root_cert, req, ca_extensions(path_length=0),
                           config.dept_days, serial, crl_urls=config.crl_urls(root.id))
        write_pem(dept.cert_path, cert)
        write_pem(os.path.join(root.newcerts_dir, "%d.pem" % serial), cert)
        ledger.append(_entry_for(layout.relpath(dept.cert_path), cert))

    safe_write(dept.chain_path, serialize(cert) + serialize(root_cert))
    regenerate_crl(config, dept, engine)
    log.info("%s: department created, serial %d in root ledger", dept_id, serial)
    return dept


def _entry_for(recorded_path: str, cert: x509.Certificate) -> LedgerEntry:
    return LedgerEntry(status=STATUS_VALID, expiry=get_utc_datetime(cert, "not_valid_after"),
                       serial=cert.serial_number, path=recorded_path, subject=subject_string(cert.subject))


def _sign_leaf(config: Config, engine: SigningEngine, auth: Authority, ext: ExtensionSet,
               req: x509.CertificateSigningRequest, alt_names: Sequence[x509.GeneralName],
               base: str) -> x509.Certificate:
    issuer_key = auth.load_key()
    issuer_cert = auth.load_cert()
    chain = auth.read_chain()
    cert_path = base + ".cert.pem"
    with auth.ledger.transaction() as ledger:
        # authority may have been revoked while waiting for lock
        _require_active(auth)
        serial = ledger.allocate_serial()
        cert = engine.sign(issuer_key, issuer_cert, req, ext, config.leaf_days, serial,
                           alt_names=alt_names, crl_urls=config.crl_urls(auth.id))
        write_pem(cert_path, cert)
        safe_write(base + ".fullchain.pem", serialize(cert) + chain)
        write_pem(os.path.join(auth.newcerts_dir, "%d.pem" % serial), cert)
        ledger.append(_entry_for(auth.layout.relpath(cert_path), cert))
    log.info("%s: issued serial %d for %r, profile %s", auth.id, serial,
             common_name(cert.subject), ext.profile)
    return cert


def issue_new(config: Config, authority: AuthorityRef, profile: Optional[str],
              common_name_value: str, sans: Optional[Sequence[str]] = None,
              engine: Optional[SigningEngine] = None) -> IssuedCertificate:
    """Generate key and request, sign leaf certificate.
    """
    auth = _authority(config, authority)
    if not common_name_value or not common_name_value.strip():
        raise ValueError("Common name must not be empty")
    common_name_value = common_name_value.strip()
    ext = resolve(profile)
    alt_names = merge_sans([], sans)
    _require_active(auth)
    if engine is None:
        engine = config.engine()

    with _reserved_base(auth.certs_dir, common_name_value) as base:
        key = engine.generate_key()
        key_path = write_pem(base + ".key.pem", key)
        subject = make_name(config.subject_for(auth.id, common_name_value))
        req = engine.build_csr(key, subject, alt_names)
        csr_path = os.path.join(auth.csr_dir, os.path.basename(base) + ".csr.pem")
        write_pem(csr_path, req)

        cert = _sign_leaf(config, engine, auth, ext, req, alt_names, base)
    return IssuedCertificate(authority=auth.id, serial=cert.serial_number, profile=ext.profile,
                             certificate=cert, cert_path=base + ".cert.pem",
                             fullchain_path=base + ".fullchain.pem",
                             key=key, key_path=key_path, csr_path=csr_path)


def issue_from_csr(config: Config, authority: AuthorityRef, profile: Optional[str],
                   csr: Union[bytes, x509.CertificateSigningRequest],
                   sans: Optional[Sequence[str]] = None,
                   engine: Optional[SigningEngine] = None) -> IssuedCertificate:
    """Sign existing request.  SANs in request are kept, overlay is appended.
    """
    auth = _authority(config, authority)
    if isinstance(csr, bytes):
        try:
            req = load_req_data(csr)
        except ValueError as ex:
            raise InvalidCSRError("Cannot parse CSR: %s" % ex, authority=auth.id) from None
    else:
        req = csr
    ext = resolve(profile)
    alt_names = merge_sans(csr_sans(req), sans)
    if engine is None:
        engine = config.engine()
    engine.verify_csr(req)
    _require_active(auth)

    cn = common_name(req.subject) or "cert_%s" % file_stamp()
    with _reserved_base(auth.certs_dir, cn) as base:
        csr_path = os.path.join(auth.csr_dir, os.path.basename(base) + ".csr.pem")
        write_pem(csr_path, req)

        cert = _sign_leaf(config, engine, auth, ext, req, alt_names, base)
    return IssuedCertificate(authority=auth.id, serial=cert.serial_number, profile=ext.profile,
                             certificate=cert, cert_path=base + ".cert.pem",
                             fullchain_path=base + ".fullchain.pem", csr_path=csr_path)


def create_csr(config: Config, common_name_value: str, sans: Optional[Sequence[str]] = None,
               out_dir: str = ".", unit: Optional[str] = None,
               engine: Optional[SigningEngine] = None) -> GeneratedRequest:
    """New key and request with SANs embedded, for signing elsewhere.
    """
    if not common_name_value or not common_name_value.strip():
        raise ValueError("Common name must not be empty")
    common_name_value = common_name_value.strip()
    alt_names = merge_sans([], sans)
    if engine is None:
        engine = config.engine()
    ensure_dirs(out_dir)
    with _reserved_base(out_dir, common_name_value, reserve=".key.pem") as base:
        key = engine.generate_key()
        key_path = write_pem(base + ".key.pem", key)
        req = engine.build_csr(key, make_name(config.subject_for(unit, common_name_value)), alt_names)
        csr_path = write_pem(base + ".csr.pem", req)
    log.info("request for %r written to %s", common_name_value, csr_path)
    return GeneratedRequest(key=key, request=req, key_path=key_path, csr_path=csr_path)

