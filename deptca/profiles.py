"""Certificate profiles and SubjectAltName merging.
"""

from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID

from .exceptions import InvalidSANError, UnknownProfileError
from .objects import make_gnames

__all__ = (
    "ExtensionSet", "PROFILES", "DEFAULT_PROFILE",
    "resolve", "ca_extensions", "parse_san", "merge_sans", "csr_sans",
)


EKU_NAME_TO_OID = {
    "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
    "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
}

# profile -> ExtendedKeyUsage
PROFILES: Dict[str, Tuple[str, ...]] = {
    "server": ("serverAuth",),
    "vpn-server": ("serverAuth", "clientAuth"),
    "client": ("clientAuth",),
    "vpn": ("clientAuth",),
    "email": ("emailProtection",),
    "multipurpose": ("serverAuth", "clientAuth", "emailProtection"),
}

DEFAULT_PROFILE = "multipurpose"

LEAF_KEY_USAGE = ("digital_signature", "key_encipherment")
SIGNING_KEY_USAGE = LEAF_KEY_USAGE + ("content_commitment",)
CA_KEY_USAGE = ("digital_signature", "key_cert_sign", "crl_sign")


class ExtensionSet(NamedTuple):
    """Extensions applied at signing time.
    """
    profile: str
    extended_key_usage: Tuple[str, ...]
    key_usage: Tuple[str, ...]
    ca: bool = False
    path_length: Optional[int] = None

    def eku_oids(self) -> List[x509.ObjectIdentifier]:
        return [EKU_NAME_TO_OID[n] for n in self.extended_key_usage]


def resolve(profile: Optional[str] = None) -> ExtensionSet:
    """Map profile name to extension set.  Empty name means default.
    """
    name = profile or DEFAULT_PROFILE
    if name not in PROFILES:
        raise UnknownProfileError("Unknown profile: %s (valid: %s)" % (name, ", ".join(PROFILES)))
    eku = PROFILES[name]
    ku = SIGNING_KEY_USAGE if "emailProtection" in eku else LEAF_KEY_USAGE
    return ExtensionSet(profile=name, extended_key_usage=eku, key_usage=ku)


def ca_extensions(path_length: Optional[int] = None) -> ExtensionSet:
    """Extension set for root (unlimited depth) and department CAs.
    """
    return ExtensionSet(profile="ca", extended_key_usage=(), key_usage=CA_KEY_USAGE,
                        ca=True, path_length=path_length)


def parse_san(text: str) -> str:
    """Validate one TYPE:value entry, return it stripped.
    """
    text = text.strip()
    make_gnames([text])
    t, val = text.split(":", 1)
    return "%s:%s" % (t, val.strip())


SANItem = Union[str, x509.GeneralName]


def merge_sans(existing: Sequence[SANItem], overlay: Optional[Sequence[str]]) -> List[x509.GeneralName]:
    """Append overlay entries to existing ones.

    The whole overlay is validated before anything is returned.  Existing
    GeneralName objects are kept as-is, duplicates are dropped.
    """
    new_gnames = make_gnames([parse_san(s) for s in (overlay or [])])
    res: List[x509.GeneralName] = []
    for item in existing:
        if isinstance(item, str):
            res.extend(make_gnames([parse_san(item)]))
        elif isinstance(item, x509.GeneralName):
            res.append(item)
        else:
            raise InvalidSANError("Unexpected SAN value: %r" % (item,))
    for gn in new_gnames:
        if gn not in res:
            res.append(gn)
    return res


def csr_sans(csr: x509.CertificateSigningRequest) -> List[x509.GeneralName]:
    """SubjectAltNames embedded in request, untouched.
    """
    try:
        ext = csr.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    except x509.ExtensionNotFound:
        return []
    return list(ext.value)
