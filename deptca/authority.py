"""Authorities and their place in the directory tree.
"""

import os
import os.path
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from .exceptions import MissingRootError, NotFoundError
from .files import load_cert, load_key
from .formats import file_stamp, valid_authority_id
from .ledger import AuthorityLedger, LedgerEntry

__all__ = (
    "Authority", "Layout", "ROOT_ID",
    "ROLE_ROOT", "ROLE_DEPARTMENT",
    "STATE_ACTIVE", "STATE_REVOKED", "STATE_ARCHIVED",
    "INTEGRITY_OK", "INTEGRITY_BROKEN", "INTEGRITY_ARCHIVED",
)

ROOT_ID = "root"

ROLE_ROOT = "root"
ROLE_DEPARTMENT = "department"

STATE_ACTIVE = "active"
STATE_REVOKED = "revoked"
STATE_ARCHIVED = "archived"

INTEGRITY_OK = "ok"
INTEGRITY_BROKEN = "broken"
INTEGRITY_ARCHIVED = "archived"


class Authority:
    """Root or department CA rooted at one directory.
    """
    layout: "Layout"
    id: str
    role: str
    directory: str
    archived: bool

    def __init__(self, layout: "Layout", authority_id: str, role: str,
                 directory: str, archived: bool = False) -> None:
        self.layout = layout
        self.id = authority_id
        self.role = role
        self.directory = directory
        self.archived = archived
        self._ledger: Optional[AuthorityLedger] = None

    def __repr__(self) -> str:
        return "<Authority %s %s>" % (self.role, self.id)

    @property
    def is_root(self) -> bool:
        return self.role == ROLE_ROOT

    # paths

    @property
    def key_path(self) -> str:
        if self.is_root:
            return os.path.join(self.directory, "private", "root.key.pem")
        return os.path.join(self.directory, "private", "ca.key.pem")

    @property
    def cert_path(self) -> str:
        if self.is_root:
            return os.path.join(self.directory, "root.cert.pem")
        return os.path.join(self.directory, "ca.cert.pem")

    @property
    def chain_path(self) -> str:
        if self.is_root:
            return self.cert_path
        return os.path.join(self.directory, "chain.cert.pem")

    @property
    def csr_path(self) -> str:
        return os.path.join(self.directory, "csr", "ca.csr.pem")

    @property
    def crl_path(self) -> str:
        return os.path.join(self.directory, "crl", "%s.crl.pem" % self.id)

    @property
    def certs_dir(self) -> str:
        return os.path.join(self.directory, "certs")

    @property
    def csr_dir(self) -> str:
        return os.path.join(self.directory, "csr")

    @property
    def newcerts_dir(self) -> str:
        return os.path.join(self.directory, "newcerts")

    def subdirs(self) -> List[str]:
        return [os.path.join(self.directory, d) for d in ("certs", "crl", "csr", "newcerts", "private")]

    # content

    @property
    def ledger(self) -> AuthorityLedger:
        if self._ledger is None:
            self._ledger = AuthorityLedger(self.directory, self.id, self.layout.lock_timeout)
        return self._ledger

    def exists(self) -> bool:
        return os.path.isdir(self.directory)

    def has_cert(self) -> bool:
        return os.path.isfile(self.cert_path)

    def has_key(self) -> bool:
        return os.path.isfile(self.key_path)

    def load_key(self) -> rsa.RSAPrivateKey:
        if not self.has_key():
            raise NotFoundError("Private key of %s not found: %s" % (self.id, self.key_path),
                                authority=self.id)
        return load_key(self.key_path)

    def load_cert(self) -> x509.Certificate:
        if not self.has_cert():
            if self.is_root:
                raise MissingRootError("Root certificate not found: %s" % self.cert_path,
                                       authority=self.id)
            raise NotFoundError("Certificate of %s not found: %s" % (self.id, self.cert_path),
                                authority=self.id)
        return load_cert(self.cert_path)

    def read_chain(self) -> str:
        """PEM chain up to the root, authority first.
        """
        with open(self.chain_path, "r", encoding="utf8") as f:
            return f.read()

    def parent(self) -> Optional["Authority"]:
        if self.is_root:
            return None
        return self.layout.root()

    def parent_entry(self) -> Optional[LedgerEntry]:
        """Entry for this authority's certificate in the root ledger.
        """
        if self.is_root:
            return None
        root = self.layout.root()
        if not root.ledger.exists():
            return None
        if self.has_cert():
            entry = root.ledger.get(self.load_cert().serial_number)
            if entry is not None:
                return entry
        return root.ledger.find_by_path(self.layout.relpath(self.cert_path))

    @property
    def state(self) -> str:
        if self.archived:
            return STATE_ARCHIVED
        entry = self.parent_entry()
        if entry is not None and entry.is_revoked:
            return STATE_REVOKED
        return STATE_ACTIVE

    @property
    def integrity(self) -> str:
        if self.archived:
            return INTEGRITY_ARCHIVED
        if self.has_cert() and self.has_key():
            return INTEGRITY_OK
        return INTEGRITY_BROKEN


class Layout:
    """Directory tree holding root, departments and recycle bin.
    """
    base_dir: str
    lock_timeout: float

    def __init__(self, base_dir: str, lock_timeout: float = 10.0) -> None:
        self.base_dir = base_dir
        self.lock_timeout = lock_timeout

    def __repr__(self) -> str:
        return "<Layout %s>" % self.base_dir

    @property
    def root_dir(self) -> str:
        return os.path.join(self.base_dir, "root")

    @property
    def departments_dir(self) -> str:
        return os.path.join(self.base_dir, "departments")

    @property
    def recycle_dir(self) -> str:
        return os.path.join(self.base_dir, "recycle-bin")

    def relpath(self, fn: str) -> str:
        """Path as recorded in ledgers, relative to base directory.
        """
        return os.path.relpath(fn, self.base_dir)

    def abspath(self, recorded: str) -> str:
        if os.path.isabs(recorded):
            return recorded
        return os.path.join(self.base_dir, recorded)

    def root(self) -> Authority:
        return Authority(self, ROOT_ID, ROLE_ROOT, self.root_dir)

    def department(self, dept_id: str, must_exist: bool = True) -> Authority:
        """Department in working tree.
        """
        if not valid_authority_id(dept_id) or dept_id == ROOT_ID:
            raise NotFoundError("Invalid department id: %r" % (dept_id,), authority=dept_id)
        auth = Authority(self, dept_id, ROLE_DEPARTMENT, os.path.join(self.departments_dir, dept_id))
        if must_exist and not auth.exists():
            raise NotFoundError("Department not found: %s" % dept_id, authority=dept_id)
        return auth

    def authority(self, authority_id: str) -> Authority:
        """Root or existing department by id.
        """
        if authority_id == ROOT_ID:
            return self.root()
        return self.department(authority_id)

    def departments(self) -> List[Authority]:
        """Departments in working tree, sorted by id.
        """
        if not os.path.isdir(self.departments_dir):
            return []
        res = []
        for name in sorted(os.listdir(self.departments_dir)):
            if not valid_authority_id(name):
                continue
            if os.path.isdir(os.path.join(self.departments_dir, name)):
                res.append(self.department(name))
        return res

    def archived(self) -> List[Authority]:
        """Departments moved to recycle bin, sorted by directory name.
        """
        if not os.path.isdir(self.recycle_dir):
            return []
        res = []
        for name in sorted(os.listdir(self.recycle_dir)):
            path = os.path.join(self.recycle_dir, name)
            if not os.path.isdir(path):
                continue
            dept_id = name.rsplit("-", 1)[0] if "-" in name else name
            res.append(Authority(self, dept_id, ROLE_DEPARTMENT, path, archived=True))
        return res

    def archive_path(self, dept_id: str) -> str:
        """Fresh recycle-bin location for department.
        """
        base = os.path.join(self.recycle_dir, "%s-%s" % (dept_id, file_stamp()))
        path = base
        n = 1
        while os.path.exists(path):
            path = "%s.%d" % (base, n)
            n += 1
        return path
