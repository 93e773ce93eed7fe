from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtendedKeyUsageOID
from helpers import TEST_BITS

from deptca import api as deptca
from deptca.objects import get_utc_datetime, make_name
from deptca.profiles import ca_extensions


def new_engine() -> deptca.SigningEngine:
    return deptca.SigningEngine(key_bits=TEST_BITS)


def new_ca(eng: deptca.SigningEngine):
    key = eng.generate_key()
    cert = eng.self_sign(key, make_name([("CN", "Test Root")]), 30, 1)
    return key, cert


def test_parse_reason():
    assert deptca.parse_reason("keyCompromise") == "keyCompromise"
    assert deptca.parse_reason("key_compromise") == "keyCompromise"
    assert deptca.parse_reason("cessation_of_operation") == "cessationOfOperation"
    assert deptca.parse_reason(None) == "unspecified"
    assert deptca.parse_reason("") == "unspecified"
    with pytest.raises(deptca.InvalidReasonError):
        deptca.parse_reason("stolen")
    with pytest.raises(ValueError):
        deptca.parse_reason("stolen")
    # removeFromCRL only makes sense in delta CRLs
    for bad in ("removeFromCRL", "remove_from_crl"):
        with pytest.raises(deptca.InvalidReasonError):
            deptca.parse_reason(bad)


def test_generate_key_bits():
    eng = new_engine()
    assert eng.generate_key().key_size == TEST_BITS
    with pytest.raises(ValueError):
        eng.generate_key(1024)


def test_self_sign():
    eng = new_engine()
    key, cert = new_ca(eng)
    assert cert.subject == cert.issuer
    bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    assert bc.ca and bc.path_length is None
    ku = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    assert ku.key_cert_sign and ku.crl_sign


def test_sign_leaf():
    eng = new_engine()
    ca_key, ca_cert = new_ca(eng)
    key = eng.generate_key()
    sans = [x509.DNSName("web1.example")]
    req = eng.build_csr(key, make_name([("CN", "web1.example")]), sans)
    eng.verify_csr(req)

    now = datetime.now(timezone.utc)
    cert = eng.sign(ca_key, ca_cert, req, deptca.resolve("server"), 397, 1000,
                    alt_names=sans, crl_urls=["http://pki.example/crl/hq.crl.pem"])
    assert cert.serial_number == 1000
    assert cert.issuer == ca_cert.subject
    expiry = get_utc_datetime(cert, "not_valid_after")
    assert abs(expiry - (now + timedelta(days=397))) < timedelta(minutes=5)

    eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert list(eku) == [ExtendedKeyUsageOID.SERVER_AUTH]
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert list(san) == sans
    bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    assert not bc.ca
    dp = cert.extensions.get_extension_for_class(x509.CRLDistributionPoints).value
    assert dp[0].full_name[0].value == "http://pki.example/crl/hq.crl.pem"


def test_sign_checks_issuer():
    eng = new_engine()
    ca_key, ca_cert = new_ca(eng)
    other_key = eng.generate_key()
    req = eng.build_csr(other_key, make_name([("CN", "x")]))
    with pytest.raises(ValueError):
        eng.sign(other_key, ca_cert, req, deptca.resolve("client"), 10, 5)

    # leaf cannot sign
    leaf = eng.sign(ca_key, ca_cert, req, deptca.resolve("client"), 10, 5)
    with pytest.raises(ValueError):
        eng.sign(other_key, leaf, req, deptca.resolve("client"), 10, 6)

    # path length 0 cannot sign sub-CAs
    sub = eng.sign(ca_key, ca_cert, req, ca_extensions(path_length=0), 10, 7)
    with pytest.raises(ValueError):
        eng.sign(other_key, sub, req, ca_extensions(path_length=0), 10, 8)


def test_verify_csr_bad_signature():
    eng = new_engine()
    key = eng.generate_key()
    req = eng.build_csr(key, make_name([("CN", "x")]))
    der = bytearray(req.public_bytes(Encoding.DER))
    der[-1] ^= 0xFF
    bad = x509.load_der_x509_csr(bytes(der))
    with pytest.raises(deptca.InvalidCSRError):
        eng.verify_csr(bad)


def test_sign_crl():
    eng = new_engine()
    ca_key, ca_cert = new_ca(eng)
    when = datetime(2026, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    items = [
        deptca.RevokedItem(1000, when, "keyCompromise"),
        deptca.RevokedItem(1002, when, "unspecified"),
    ]
    crl = eng.sign_crl(ca_key, ca_cert, items, 1005, 30)
    assert crl.is_signature_valid(ca_cert.public_key())
    assert deptca.crl_number(crl) == 1005
    assert sorted(deptca.crl_serials(crl)) == [1000, 1002]

    r1 = crl.get_revoked_certificate_by_serial_number(1000)
    assert r1.extensions.get_extension_for_class(x509.CRLReason).value.reason == x509.ReasonFlags.key_compromise
    r2 = crl.get_revoked_certificate_by_serial_number(1002)
    with pytest.raises(x509.ExtensionNotFound):
        r2.extensions.get_extension_for_class(x509.CRLReason)

    empty = eng.sign_crl(ca_key, ca_cert, [], 1006, 30)
    assert deptca.crl_serials(empty) == []
