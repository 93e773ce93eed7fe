from datetime import datetime, timedelta, timezone

import pytest

from deptca.formats import (
    file_stamp, format_ledger_time, parse_dn, parse_ledger_time,
    parse_serial, render_dn, render_expiry, safe_name, show_list,
    valid_authority_id,
)


def test_ledger_time():
    dt = datetime(2026, 10, 31, 23, 59, 59, tzinfo=timezone.utc)
    assert format_ledger_time(dt) == "261031235959Z"
    assert parse_ledger_time("261031235959Z") == dt

    # GeneralizedTime from 2050
    dt2 = datetime(2051, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert format_ledger_time(dt2) == "20510102030405Z"
    assert parse_ledger_time("20510102030405Z") == dt2

    # two-digit years above 49 are previous century
    assert parse_ledger_time("991231000000Z").year == 1999

    # other zones are converted
    msk = timezone(timedelta(hours=3))
    assert format_ledger_time(datetime(2026, 1, 1, 3, 0, 0, tzinfo=msk)) == "260101000000Z"

    with pytest.raises(ValueError):
        parse_ledger_time("2610312359Z")
    with pytest.raises(ValueError):
        parse_ledger_time("261031235959")


def test_parse_serial():
    assert parse_serial("1000") == 1000
    assert parse_serial(" 1001\n") == 1001
    assert parse_serial(7) == 7
    with pytest.raises(ValueError):
        parse_serial("10ff")
    with pytest.raises(ValueError):
        parse_serial("")


def test_safe_name():
    assert safe_name("web1.example.com") == "web1.example.com"
    assert safe_name("Alice Doe") == "Alice_Doe"
    assert safe_name("a/b\\c:d*") == "abcd"
    assert safe_name("user@example.com") == "user@example.com"
    assert safe_name("///") == ""


def test_valid_authority_id():
    assert valid_authority_id("hq")
    assert valid_authority_id("hq-personal")
    assert valid_authority_id("dept_1.x")
    assert not valid_authority_id("")
    assert not valid_authority_id(".")
    assert not valid_authority_id("..")
    assert not valid_authority_id("a/b")
    assert not valid_authority_id("a b")


def test_dn_strings():
    pairs = [("C", "RU"), ("O", "Golden Deals LLC"), ("CN", "a/b")]
    txt = render_dn(pairs)
    assert txt == "/C=RU/O=Golden Deals LLC/CN=a\\/b"
    assert parse_dn(txt) == pairs
    assert parse_dn("/CN=x\\\\y") == [("CN", "x\\y")]
    assert parse_dn("") == []
    with pytest.raises(ValueError):
        parse_dn("/CN")


def test_dn_control_chars():
    pairs = [("O", "x\x01y"), ("CN", "evil\nR\tx\r")]
    txt = render_dn(pairs)
    assert txt == "/O=x\\x01y/CN=evil\\nR\\tx\\r"
    assert "\n" not in txt and "\t" not in txt
    assert parse_dn(txt) == pairs
    # literal backslash followed by n stays literal
    assert parse_dn(render_dn([("CN", "a\\n")])) == [("CN", "a\\n")]


def test_render_expiry():
    now = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
    exp = datetime(2026, 1, 11, 12, 30, 0, tzinfo=timezone.utc)
    assert render_expiry(exp, now) == "12:30 11-01-2026 ( 10d left)"
    assert render_expiry(now - timedelta(days=3), now) == "00:00 29-12-2025 (  0d left)"


def test_file_stamp():
    dt = datetime(2026, 3, 4, 5, 6, 7, 890123)
    assert file_stamp(dt) == "20260304050607"
    assert file_stamp(dt, fine=True) == "20260304050607890123"


def test_show_list():
    lines = []
    show_list("SAN", ["DNS:a"], lines.append)
    show_list("SAN", ["DNS:a", "DNS:b"], lines.append)
    show_list("SAN", [], lines.append)
    assert lines == ["SAN: DNS:a", "SAN:", "  DNS:a", "  DNS:b"]
