import ipaddress

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from deptca import api as deptca
from deptca.profiles import ca_extensions, csr_sans, parse_san


def test_resolve_server():
    ext = deptca.resolve("server")
    assert ext.profile == "server"
    assert ext.extended_key_usage == ("serverAuth",)
    assert ext.eku_oids() == [ExtendedKeyUsageOID.SERVER_AUTH]
    assert not ext.ca
    assert "digital_signature" in ext.key_usage
    assert "key_encipherment" in ext.key_usage
    assert "content_commitment" not in ext.key_usage


def test_resolve_table():
    assert deptca.resolve("vpn-server").extended_key_usage == ("serverAuth", "clientAuth")
    assert deptca.resolve("client").extended_key_usage == ("clientAuth",)
    assert deptca.resolve("vpn").extended_key_usage == ("clientAuth",)
    assert deptca.resolve("email").extended_key_usage == ("emailProtection",)
    assert "content_commitment" in deptca.resolve("email").key_usage
    multi = deptca.resolve("multipurpose")
    assert multi.extended_key_usage == ("serverAuth", "clientAuth", "emailProtection")
    assert "content_commitment" in multi.key_usage


def test_resolve_default():
    assert deptca.resolve(None).profile == "multipurpose"
    assert deptca.resolve("").profile == "multipurpose"


def test_resolve_unknown():
    with pytest.raises(deptca.UnknownProfileError):
        deptca.resolve("bogus")
    with pytest.raises(ValueError):
        deptca.resolve("Server")


def test_parse_san():
    assert parse_san(" DNS:web1.example ") == "DNS:web1.example"
    assert parse_san("IP: 10.0.0.1") == "IP:10.0.0.1"
    assert parse_san("email:a@example.com") == "email:a@example.com"
    assert parse_san("URI:spiffe://svc") == "URI:spiffe://svc"
    for bad in ("dns:web1", "web1.example", "RID:1.2.3", "DNS:", "IP:10.0.0.300"):
        with pytest.raises(deptca.InvalidSANError):
            parse_san(bad)


def test_merge_sans():
    res = deptca.merge_sans(["DNS:a.example"], ["DNS:b.example", "IP:10.1.1.1", "DNS:a.example"])
    assert res == [
        x509.DNSName("a.example"),
        x509.DNSName("b.example"),
        x509.IPAddress(ipaddress.ip_address("10.1.1.1")),
    ]
    assert deptca.merge_sans([], None) == []


def test_merge_sans_keeps_existing():
    existing = [x509.DNSName("csr.example"), x509.RFC822Name("x@example.com")]
    assert deptca.merge_sans(existing, None) == existing
    assert deptca.merge_sans(existing, []) == existing


def test_merge_sans_rejects_whole_overlay():
    with pytest.raises(deptca.InvalidSANError):
        deptca.merge_sans(["DNS:a.example"], ["DNS:b.example", "XMPP:c"])


def test_csr_sans():
    eng = deptca.SigningEngine(key_bits=2048)
    key = eng.generate_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "csr.example")])
    req = eng.build_csr(key, name, [x509.DNSName("csr.example")])
    assert csr_sans(req) == [x509.DNSName("csr.example")]
    req2 = eng.build_csr(key, name)
    assert csr_sans(req2) == []


def test_ca_extensions():
    ext = deptca.ExtensionSet(profile="x", extended_key_usage=(), key_usage=())
    assert not ext.ca
    ca = ca_extensions(path_length=0)
    assert ca.ca and ca.path_length == 0
    assert set(ca.key_usage) == {"digital_signature", "key_cert_sign", "crl_sign"}
