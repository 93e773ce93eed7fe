"""Python objects <> cryptography objects.
"""

import ipaddress
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding, NoEncryption, PrivateFormat, PublicFormat,
)
from cryptography.x509.oid import NameOID

from .exceptions import InvalidSANError
from .formats import render_dn

__all__ = (
    "DN_CODE_TO_OID", "DN_OID_TO_CODE", "SAN_TYPES",
    "make_name", "extract_name", "subject_string", "common_name",
    "make_gnames", "extract_gnames", "make_key_usage", "serialize",
    "get_utc_datetime",
)


DN_CODE_TO_OID = {
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "CN": NameOID.COMMON_NAME,
    "emailAddress": NameOID.EMAIL_ADDRESS,
    "serialNumber": NameOID.SERIAL_NUMBER,
    "DC": NameOID.DOMAIN_COMPONENT,
    "UID": NameOID.USER_ID,
}

DN_OID_TO_CODE = {v: k for k, v in DN_CODE_TO_OID.items()}

# SAN prefixes accepted at the issuance boundary, exact spelling
SAN_TYPES = ("DNS", "IP", "email", "URI")


def make_name(pairs: Iterable[Tuple[str, str]]) -> x509.Name:
    """Create Name object from (key, value) pairs.
    """
    attlist = []
    for k, v in pairs:
        if k not in DN_CODE_TO_OID:
            raise ValueError("Unknown Name tag: %s" % (k,))
        attlist.append(x509.NameAttribute(DN_CODE_TO_OID[k], v))
    return x509.Name(attlist)


def extract_name(name: x509.Name) -> List[Tuple[str, str]]:
    """Convert Name object to (key, value) pairs.
    """
    if not isinstance(name, x509.Name):
        raise TypeError("Expect x509.Name")
    res = []
    for att in name:
        value = att.value
        if isinstance(value, bytes):
            value = value.decode("utf8", "replace")
        res.append((DN_OID_TO_CODE.get(att.oid, att.oid.dotted_string), value))
    return res


def subject_string(name: x509.Name) -> str:
    """Subject in ledger form: /C=XX/O=Org/CN=name
    """
    return render_dn(extract_name(name))


def common_name(name: x509.Name) -> str:
    """Return CN value or empty string.
    """
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return ""
    value = attrs[0].value
    if isinstance(value, bytes):
        return value.decode("utf8", "replace")
    return value


def make_gnames(gname_list: Sequence[str]) -> List[x509.GeneralName]:
    """Converts list of prefixed strings to GeneralName list.
    """
    gnames: List[x509.GeneralName] = []
    for alt in gname_list:
        if ":" not in alt:
            raise InvalidSANError("Bad SAN entry %r (use DNS: / IP: / email: / URI:)" % (alt,))
        t, val = alt.split(":", 1)
        val = val.strip()
        if t not in SAN_TYPES or not val:
            raise InvalidSANError("Bad SAN entry %r (use DNS: / IP: / email: / URI:)" % (alt,))
        if t == "DNS":
            gnames.append(x509.DNSName(val))
        elif t == "email":
            gnames.append(x509.RFC822Name(val))
        elif t == "URI":
            gnames.append(x509.UniformResourceIdentifier(val))
        else:
            try:
                gnames.append(x509.IPAddress(ipaddress.ip_address(val)))
            except ValueError:
                raise InvalidSANError("Bad IP address in SAN entry %r" % (alt,)) from None
    return gnames


def extract_gnames(ext_name_list: Union[x509.SubjectAlternativeName, Sequence[x509.GeneralName]]) -> List[str]:
    """Convert list of GeneralNames to list of prefixed strings.
    """
    res = []
    for gn in ext_name_list:
        if isinstance(gn, x509.RFC822Name):
            res.append("email:" + gn.value)
        elif isinstance(gn, x509.DNSName):
            res.append("DNS:" + gn.value)
        elif isinstance(gn, x509.UniformResourceIdentifier):
            res.append("URI:" + gn.value)
        elif isinstance(gn, x509.IPAddress):
            res.append("IP:" + str(gn.value))
        else:
            raise InvalidSANError("Unsupported subjectAltName type: %s" % (gn,))
    return res


def make_key_usage(digital_signature=False, content_commitment=False, key_encipherment=False,
                   data_encipherment=False, key_agreement=False, key_cert_sign=False,
                   crl_sign=False, encipher_only=False, decipher_only=False):
    """Default arguments for KeyUsage.
    """
    return x509.KeyUsage(digital_signature=digital_signature, content_commitment=content_commitment,
                         key_encipherment=key_encipherment, data_encipherment=data_encipherment,
                         key_agreement=key_agreement, key_cert_sign=key_cert_sign, crl_sign=crl_sign,
                         encipher_only=encipher_only, decipher_only=decipher_only)


def serialize(obj) -> str:
    """Returns PEM text for certificate, request, CRL, public or private key.

    Private keys are written unencrypted in PKCS8 form, protected by
    file permissions like the openssl-managed tree.
    """
    if isinstance(obj, rsa.RSAPrivateKey):
        res = obj.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    elif isinstance(obj, rsa.RSAPublicKey):
        res = obj.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    elif isinstance(obj, (x509.Certificate, x509.CertificateSigningRequest,
                          x509.CertificateRevocationList)):
        res = obj.public_bytes(Encoding.PEM)
    else:
        raise TypeError("Unsupported type for serialize(): %r" % obj)
    txt = res.decode("utf8")
    if txt[-1] != "\n":
        return txt + "\n"
    return txt


def get_utc_datetime(obj, field: str) -> Optional[datetime]:
    """Timezone-aware timestamp from cryptography object, across versions.
    """
    field_utc = field + "_utc"
    if hasattr(obj, field_utc):
        return getattr(obj, field_utc)
    val = getattr(obj, field)
    if val is None:
        return None
    return val.replace(tzinfo=timezone.utc)
