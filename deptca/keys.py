"""Key handling
"""

from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

__all__ = (
    "SAFE_BITS_RSA", "DEFAULT_BITS", "new_rsa_key", "get_hash_algo",
    "same_pubkey", "get_key_name",
)


SAFE_BITS_RSA = (2048, 3072, 4096)

DEFAULT_BITS = 4096

KeyOrCert = Union[x509.Certificate, x509.CertificateSigningRequest,
                  rsa.RSAPublicKey, rsa.RSAPrivateKey]


def new_rsa_key(bits: int = DEFAULT_BITS) -> rsa.RSAPrivateKey:
    """New RSA key.
    """
    if bits not in SAFE_BITS_RSA:
        raise ValueError("Bad value for RSA bits: %d" % bits)
    return rsa.generate_private_key(key_size=bits, public_exponent=65537)


def get_hash_algo() -> SHA256:
    """Signature hash, fixed to SHA-256.
    """
    return SHA256()


def _pubkey(obj: KeyOrCert):
    if isinstance(obj, (x509.Certificate, x509.CertificateSigningRequest)):
        return obj.public_key()
    if isinstance(obj, rsa.RSAPrivateKey):
        return obj.public_key()
    return obj


def same_pubkey(o1: KeyOrCert, o2: KeyOrCert) -> bool:
    """Compare public keys.
    """
    fmt = PublicFormat.SubjectPublicKeyInfo
    p1 = _pubkey(o1).public_bytes(Encoding.PEM, fmt)
    p2 = _pubkey(o2).public_bytes(Encoding.PEM, fmt)
    return p1 == p2


def get_key_name(key: KeyOrCert) -> str:
    """Return key type.
    """
    pub = _pubkey(key)
    if isinstance(pub, rsa.RSAPublicKey):
        return "rsa:%d" % pub.key_size
    return "<unknown key type>"
