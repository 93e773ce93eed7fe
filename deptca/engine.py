"""Signing engine: keys, requests, certificates and CRLs.

Thin layer over cryptography.  Knows nothing about ledgers or
directory layout; callers pass serial numbers and validity explicitly.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, NamedTuple, Optional, Sequence

from cryptography import x509
from cryptography.exceptions import InvalidSignature

from .exceptions import InvalidCSRError, InvalidReasonError
from .keys import DEFAULT_BITS, get_hash_algo, new_rsa_key, same_pubkey
from .objects import make_key_usage
from .profiles import ExtensionSet, ca_extensions

__all__ = (
    "CRL_REASON", "RevokedItem", "SigningEngine", "parse_reason",
    "LEAF_DAYS", "DEPT_DAYS", "ROOT_DAYS", "crl_serials", "crl_number",
)

LEAF_DAYS = 397
DEPT_DAYS = 3650
ROOT_DAYS = 7300

# backdate notBefore to tolerate clock skew
CLOCK_SKEW = timedelta(hours=1)


# CRL reason, openssl spelling
CRL_REASON = {
    "unspecified": x509.ReasonFlags.unspecified,
    "keyCompromise": x509.ReasonFlags.key_compromise,
    "CACompromise": x509.ReasonFlags.ca_compromise,
    "affiliationChanged": x509.ReasonFlags.affiliation_changed,
    "superseded": x509.ReasonFlags.superseded,
    "cessationOfOperation": x509.ReasonFlags.cessation_of_operation,
    "certificateHold": x509.ReasonFlags.certificate_hold,
    "privilegeWithdrawn": x509.ReasonFlags.privilege_withdrawn,
    "AACompromise": x509.ReasonFlags.aa_compromise,
}

_REASON_ALIASES = {flag.value: name for name, flag in CRL_REASON.items()}
_REASON_ALIASES.update({flag.name: name for name, flag in CRL_REASON.items()})


def parse_reason(reason: Optional[str]) -> str:
    """Return canonical reason name.  Accepts snake_case aliases.
    """
    if not reason:
        return "unspecified"
    if reason in CRL_REASON:
        return reason
    if reason in _REASON_ALIASES:
        return _REASON_ALIASES[reason]
    raise InvalidReasonError("Unknown revocation reason: %s" % reason)


class RevokedItem(NamedTuple):
    serial: int
    revocation_date: datetime
    reason: str


def _install_extensions(builder, ext: ExtensionSet, subject_pubkey, issuer_pubkey,
                        alt_names: Sequence[x509.GeneralName], crl_urls: Sequence[str]):
    """Add extensions shared by certificates and self-signed roots.
    """
    builder = builder.add_extension(
        x509.BasicConstraints(ca=ext.ca, path_length=ext.path_length if ext.ca else None),
        critical=True)
    builder = builder.add_extension(
        make_key_usage(**{k: True for k in ext.key_usage}), critical=True)
    if ext.extended_key_usage:
        builder = builder.add_extension(x509.ExtendedKeyUsage(ext.eku_oids()), critical=False)
    if alt_names:
        builder = builder.add_extension(x509.SubjectAlternativeName(list(alt_names)), critical=False)
    builder = builder.add_extension(x509.SubjectKeyIdentifier.from_public_key(subject_pubkey), critical=False)
    builder = builder.add_extension(
        x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_pubkey), critical=False)
    if crl_urls:
        points = [x509.DistributionPoint([x509.UniformResourceIdentifier(u)], None, None, None)
                  for u in crl_urls]
        builder = builder.add_extension(x509.CRLDistributionPoints(points), critical=False)
    return builder


class SigningEngine:
    """RSA + SHA-256 signing primitives.
    """
    key_bits: int

    def __init__(self, key_bits: int = DEFAULT_BITS) -> None:
        self.key_bits = key_bits

    def generate_key(self, bits: Optional[int] = None):
        return new_rsa_key(bits or self.key_bits)

    def build_csr(self, key, subject: x509.Name,
                  alt_names: Optional[Sequence[x509.GeneralName]] = None) -> x509.CertificateSigningRequest:
        """Create certificate request, SANs embedded as extension.
        """
        builder = x509.CertificateSigningRequestBuilder().subject_name(subject)
        builder = builder.add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        if alt_names:
            builder = builder.add_extension(x509.SubjectAlternativeName(list(alt_names)), critical=False)
        return builder.sign(private_key=key, algorithm=get_hash_algo())

    def verify_csr(self, csr: x509.CertificateSigningRequest) -> None:
        """Check request self-signature.
        """
        try:
            valid = csr.is_signature_valid
        except (ValueError, InvalidSignature) as ex:
            raise InvalidCSRError("CSR verification failed: %s" % ex) from None
        if not valid:
            raise InvalidCSRError("CSR verification failed, the request may be corrupted")

    def sign(self, issuer_key, issuer_cert: x509.Certificate,
             csr: x509.CertificateSigningRequest, extensions: ExtensionSet,
             validity_days: int, serial: int,
             alt_names: Optional[Sequence[x509.GeneralName]] = None,
             crl_urls: Optional[Sequence[str]] = None,
             subject: Optional[x509.Name] = None,
             now: Optional[datetime] = None) -> x509.Certificate:
        """Issue certificate for request.
        """
        if not same_pubkey(issuer_key, issuer_cert):
            raise ValueError("Issuer private key does not match certificate")
        bc = issuer_cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        if not bc.ca:
            raise ValueError("Issuer must be CA")
        if extensions.ca and bc.path_length == 0:
            raise ValueError("Issuer cannot sign sub-CAs")

        if now is None:
            now = datetime.now(timezone.utc)
        subject_pubkey = csr.public_key()
        builder = (x509.CertificateBuilder()
                   .subject_name(subject if subject is not None else csr.subject)
                   .issuer_name(issuer_cert.subject)
                   .not_valid_before(now - CLOCK_SKEW)
                   .not_valid_after(now + timedelta(days=validity_days))
                   .serial_number(serial)
                   .public_key(subject_pubkey))
        builder = _install_extensions(builder, extensions, subject_pubkey, issuer_key.public_key(),
                                      alt_names or [], crl_urls or [])
        return builder.sign(private_key=issuer_key, algorithm=get_hash_algo())

    def self_sign(self, key, subject: x509.Name, validity_days: int, serial: int,
                  now: Optional[datetime] = None) -> x509.Certificate:
        """Self-signed root certificate.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        builder = (x509.CertificateBuilder()
                   .subject_name(subject)
                   .issuer_name(subject)
                   .not_valid_before(now - CLOCK_SKEW)
                   .not_valid_after(now + timedelta(days=validity_days))
                   .serial_number(serial)
                   .public_key(key.public_key()))
        builder = _install_extensions(builder, ca_extensions(), key.public_key(), key.public_key(), [], [])
        return builder.sign(private_key=key, algorithm=get_hash_algo())

    def sign_crl(self, issuer_key, issuer_cert: x509.Certificate,
                 revoked: Iterable[RevokedItem], crl_number: int, days: int,
                 now: Optional[datetime] = None) -> x509.CertificateRevocationList:
        """Create full CRL for issuer.
        """
        if not same_pubkey(issuer_key, issuer_cert):
            raise ValueError("Issuer private key does not match certificate")
        if now is None:
            now = datetime.now(timezone.utc)
        builder = (x509.CertificateRevocationListBuilder()
                   .issuer_name(issuer_cert.subject)
                   .last_update(now)
                   .next_update(now + timedelta(days=days))
                   .add_extension(x509.CRLNumber(crl_number), critical=False)
                   .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
                                  critical=False))
        for item in revoked:
            rbuilder = (x509.RevokedCertificateBuilder()
                        .serial_number(item.serial)
                        .revocation_date(item.revocation_date))
            code = CRL_REASON[parse_reason(item.reason)]
            if code != x509.ReasonFlags.unspecified:
                rbuilder = rbuilder.add_extension(x509.CRLReason(code), critical=False)
            builder = builder.add_revoked_certificate(rbuilder.build())
        return builder.sign(private_key=issuer_key, algorithm=get_hash_algo())


def crl_serials(crl: x509.CertificateRevocationList) -> List[int]:
    """Serials listed in CRL.
    """
    return [r.serial_number for r in crl]


def crl_number(crl: x509.CertificateRevocationList) -> Optional[int]:
    try:
        return crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number
    except x509.ExtensionNotFound:
        return None
