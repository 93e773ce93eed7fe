"""File reading and writing.
"""

import os
import os.path
import re
import tempfile
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    load_der_private_key, load_pem_private_key,
)

from .formats import as_bytes
from .objects import serialize

__all__ = (
    "is_pem_data", "load_key", "load_cert", "load_req", "load_req_data",
    "load_crl", "safe_write", "write_pem", "ensure_dirs",
)


_bin_rc = re.compile(b"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def is_pem_data(data: bytes) -> bool:
    """Detect if data is textual.
    """
    return not _bin_rc.search(data)


def _read(fn: str) -> bytes:
    with open(fn, "rb") as f:
        return f.read()


def load_key(fn: str) -> rsa.RSAPrivateKey:
    """Read private key.
    """
    data = _read(fn)
    if is_pem_data(data):
        key = load_pem_private_key(data, password=None)
    else:
        key = load_der_private_key(data, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise TypeError("Expect RSA private key in %s" % fn)
    return key


def load_req_data(data: bytes) -> x509.CertificateSigningRequest:
    """Parse CSR from PEM or DER bytes.
    """
    if is_pem_data(data):
        return x509.load_pem_x509_csr(data)
    return x509.load_der_x509_csr(data)


def load_req(fn: str) -> x509.CertificateSigningRequest:
    """Read CSR file.
    """
    return load_req_data(_read(fn))


def load_cert(fn: str) -> x509.Certificate:
    """Read CRT file.
    """
    data = _read(fn)
    if is_pem_data(data):
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def load_crl(fn: str) -> x509.CertificateRevocationList:
    """Read CRL file.
    """
    data = _read(fn)
    if is_pem_data(data):
        return x509.load_pem_x509_crl(data)
    return x509.load_der_x509_crl(data)


def ensure_dirs(*dirs: str, mode: int = 0o755) -> None:
    for d in dirs:
        os.makedirs(d, mode=mode, exist_ok=True)


def safe_write(fn: str, data: Union[str, bytes], mode: int = 0o644) -> None:
    """Write file atomically: temp file in same directory, fsync, rename.
    """
    dirname = os.path.dirname(fn) or "."
    fd, tmpfn = tempfile.mkstemp(prefix=".tmp-", dir=dirname)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(as_bytes(data))
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmpfn, mode)
        os.replace(tmpfn, fn)
    except BaseException:
        if os.path.exists(tmpfn):
            os.unlink(tmpfn)
        raise


def write_pem(fn: str, obj, mode: Optional[int] = None) -> str:
    """Serialize object to PEM file, private keys get 0600.
    """
    if mode is None:
        mode = 0o600 if isinstance(obj, rsa.RSAPrivateKey) else 0o644
    safe_write(fn, serialize(obj), mode)
    return fn
