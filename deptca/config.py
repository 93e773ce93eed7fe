"""Settings loaded from INI file.
"""

import os
from configparser import ConfigParser, ExtendedInterpolation
from typing import List, Mapping, Optional, Sequence, Tuple

from .authority import Layout
from .engine import DEPT_DAYS, LEAF_DAYS, ROOT_DAYS, SigningEngine
from .keys import DEFAULT_BITS, SAFE_BITS_RSA
from .objects import DN_CODE_TO_OID

__all__ = ("Config", "load_config", "CONFIG_ENV", "DEFAULT_SUBJECT")

CONFIG_ENV = "DEPTCA_CONFIG"

DEFAULT_SUBJECT: Tuple[Tuple[str, str], ...] = (
    ("C", "RU"),
    ("ST", "Moscow Oblast"),
    ("L", "Odintsovo"),
    ("O", "Golden Deals LLC"),
)

_MAIN_KEYS = (
    "base_dir", "public_dir", "key_bits", "leaf_days", "dept_days",
    "root_days", "crl_days", "lock_timeout", "crl_url",
)

_DN_LOWER = {k.lower(): k for k in DN_CODE_TO_OID if k not in ("OU", "CN")}


class Config:
    """Runtime settings for one CA tree.
    """
    base_dir: str
    public_dir: str
    key_bits: int
    leaf_days: int
    dept_days: int
    root_days: int
    crl_days: int
    lock_timeout: float
    crl_url: Optional[str]
    subject: Tuple[Tuple[str, str], ...]
    root_common_name: str

    def __init__(self, base_dir: str = "ca", public_dir: str = "public",
                 key_bits: int = DEFAULT_BITS, leaf_days: int = LEAF_DAYS,
                 dept_days: int = DEPT_DAYS, root_days: int = ROOT_DAYS,
                 crl_days: int = 30, lock_timeout: float = 10.0,
                 crl_url: Optional[str] = None,
                 subject: Sequence[Tuple[str, str]] = DEFAULT_SUBJECT,
                 root_common_name: str = "Root CA") -> None:
        if key_bits not in SAFE_BITS_RSA:
            raise ValueError("Bad value for key_bits: %d" % key_bits)
        for name, val in (("leaf_days", leaf_days), ("dept_days", dept_days),
                          ("root_days", root_days), ("crl_days", crl_days)):
            if val <= 0:
                raise ValueError("%s must be positive" % name)
        if lock_timeout < 0:
            raise ValueError("lock_timeout must not be negative")
        self.base_dir = base_dir
        self.public_dir = public_dir
        self.key_bits = key_bits
        self.leaf_days = leaf_days
        self.dept_days = dept_days
        self.root_days = root_days
        self.crl_days = crl_days
        self.lock_timeout = lock_timeout
        self.crl_url = crl_url or None
        self.subject = tuple(subject)
        self.root_common_name = root_common_name

    def layout(self) -> Layout:
        return Layout(self.base_dir, lock_timeout=self.lock_timeout)

    def engine(self) -> SigningEngine:
        return SigningEngine(key_bits=self.key_bits)

    def subject_for(self, unit: Optional[str], common_name: str) -> List[Tuple[str, str]]:
        """Default DN fields plus OU and CN.
        """
        pairs = list(self.subject)
        if unit:
            pairs.append(("OU", unit))
        pairs.append(("CN", common_name))
        return pairs

    def crl_urls(self, authority_id: str) -> List[str]:
        """CRL distribution point for certificates issued by authority.
        """
        if not self.crl_url:
            return []
        return ["%s/%s.crl.pem" % (self.crl_url.rstrip("/"), authority_id)]


def load_config(fn: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load settings from file, or defaults when no file is given.

    File name comes from argument, then $DEPTCA_CONFIG.  Relative
    directories in file are taken relative to the file location.
    """
    if environ is None:
        environ = os.environ
    if not fn:
        fn = environ.get(CONFIG_ENV) or None
    if not fn:
        return Config()

    cf = ConfigParser(interpolation=ExtendedInterpolation(),
                      delimiters=["="], comment_prefixes=["#"], inline_comment_prefixes=["#"])
    with open(fn, "r", encoding="utf8") as f:
        cf.read_file(f, fn)

    for sect in cf.sections():
        if sect not in ("deptca", "subject", "root"):
            raise ValueError("%s: unknown section [%s]" % (fn, sect))

    kwargs = {}
    if cf.has_section("deptca"):
        main = dict(cf.items("deptca"))
        for k in main:
            if k not in _MAIN_KEYS:
                raise ValueError("%s: unknown key in [deptca]: %s" % (fn, k))
        topdir = os.path.dirname(os.path.abspath(fn))
        for k in ("base_dir", "public_dir"):
            if main.get(k):
                kwargs[k] = os.path.join(topdir, main[k])
        for k in ("key_bits", "leaf_days", "dept_days", "root_days", "crl_days"):
            if main.get(k):
                kwargs[k] = int(main[k])
        if main.get("lock_timeout"):
            kwargs["lock_timeout"] = float(main["lock_timeout"])
        if main.get("crl_url"):
            kwargs["crl_url"] = main["crl_url"]

    if cf.has_section("subject"):
        pairs = []
        for k, v in cf.items("subject"):
            if k not in _DN_LOWER:
                raise ValueError("%s: unknown key in [subject]: %s" % (fn, k))
            if v:
                pairs.append((_DN_LOWER[k], v))
        kwargs["subject"] = pairs

    if cf.has_section("root"):
        for k, v in cf.items("root"):
            if k != "common_name":
                raise ValueError("%s: unknown key in [root]: %s" % (fn, k))
            kwargs["root_common_name"] = v

    return Config(**kwargs)
