
import os.path
from pathlib import Path
from typing import Any, List, Sequence

from cryptography import x509

from deptca import api as deptca

TEST_BITS = 2048


def make_config(tmp_path: Path, **kwargs: Any) -> deptca.Config:
    """Config pointing into test directory, with small keys.
    """
    kwargs.setdefault("key_bits", TEST_BITS)
    kwargs.setdefault("lock_timeout", 30.0)
    return deptca.Config(base_dir=os.path.join(str(tmp_path), "ca"),
                         public_dir=os.path.join(str(tmp_path), "public"),
                         **kwargs)


def new_tree(tmp_path: Path, depts: Sequence[str] = ("hq",), **kwargs: Any) -> deptca.Config:
    """Bootstrapped root plus departments.
    """
    cfg = make_config(tmp_path, **kwargs)
    deptca.bootstrap_root(cfg)
    for dept in depts:
        deptca.create_department(cfg, dept)
    return cfg


def read_lines(fn: str) -> List[str]:
    with open(fn, "r", encoding="utf8") as f:
        return [ln.rstrip("\n") for ln in f if ln.strip()]


def read_text(fn: str) -> str:
    with open(fn, "r", encoding="utf8") as f:
        return f.read()


def load_crl_of(auth: deptca.Authority) -> x509.CertificateRevocationList:
    return deptca.load_crl(auth.crl_path)


def crl_reason(crl: x509.CertificateRevocationList, serial: int) -> x509.ReasonFlags:
    rev = crl.get_revoked_certificate_by_serial_number(serial)
    assert rev is not None
    try:
        return rev.extensions.get_extension_for_class(x509.CRLReason).value.reason
    except x509.ExtensionNotFound:
        return x509.ReasonFlags.unspecified


def count_pem(data: str, kind: str = "CERTIFICATE") -> int:
    return data.count("-----BEGIN %s-----" % kind)
