import json
import os.path
import sys

import pytest
from helpers import count_pem, read_text

from deptca.tool import render_table, run_deptca


def deptca(*args):
    try:
        run_deptca(args)
        return 0
    except SystemExit as ex:
        return int(ex.code)
    except Exception as ex:
        sys.stderr.write(str(ex) + "\n")
        return 1


@pytest.fixture(name="ini")
def fixture_ini(tmp_path):
    fn = tmp_path / "deptca.ini"
    fn.write_text("[deptca]\nbase_dir = ca\npublic_dir = public\nkey_bits = 2048\n"
                  "[root]\ncommon_name = Test Root\n")
    return str(fn)


def tree(ini, *depts):
    assert deptca("--config", ini, "bootstrap") == 0
    for d in depts:
        assert deptca("--config", ini, "new-dept", d) == 0


def test_no_command(capsys):
    assert deptca() >= 1
    res = capsys.readouterr()
    assert "command" in res.err


def test_help(capsys):
    assert deptca("--help") == 0
    res = capsys.readouterr()
    assert "revoke-dept" in res.out
    assert "list-depts" in res.out


def test_version(capsys):
    assert deptca("--version") == 0
    res = capsys.readouterr()
    assert "cryptography" in res.out


def test_bootstrap(ini, tmp_path, capsys):
    assert deptca("--config", ini, "bootstrap") == 0
    res = capsys.readouterr()
    assert res.out.strip() == os.path.join(str(tmp_path), "ca", "root", "root.cert.pem")
    assert "Root CA ready" in res.err

    assert deptca("-q", "--config", ini, "bootstrap") == 0
    res = capsys.readouterr()
    assert "Root CA ready" not in res.err


def test_new_dept(ini, tmp_path, capsys):
    assert deptca("--config", ini, "new-dept", "hq") >= 1
    res = capsys.readouterr()
    assert "MissingRootError" in res.err

    tree(ini, "hq")
    capsys.readouterr()
    assert os.path.isfile(os.path.join(str(tmp_path), "ca", "departments", "hq", "chain.cert.pem"))

    assert deptca("--config", ini, "new-dept", "hq") >= 1
    res = capsys.readouterr()
    assert "already exists" in res.err
    assert deptca("--config", ini, "new-dept", "a b") >= 1
    res = capsys.readouterr()
    assert "Invalid department id" in res.err


def test_issue(ini, capsys):
    tree(ini, "hq")
    capsys.readouterr()
    assert deptca("--config", ini, "issue", "hq", "server", "web1.example.com",
                  "DNS:web1.example.com", "IP:10.0.0.1") == 0
    res = capsys.readouterr()
    assert "id:        hq-1000" in res.out
    assert "Issued hq-1000" in res.err
    lines = dict(ln.split(":", 1) for ln in res.out.splitlines())
    assert count_pem(read_text(lines["fullchain"].strip())) == 3

    assert deptca("--config", ini, "issue", "hq", "webserver", "x") >= 1
    res = capsys.readouterr()
    assert "UnknownProfileError" in res.err
    assert deptca("--config", ini, "issue", "hq", "server", "x", "dns:x") >= 1
    res = capsys.readouterr()
    assert "InvalidSANError" in res.err
    assert deptca("--config", ini, "issue", "nope", "server", "x") >= 1
    res = capsys.readouterr()
    assert "NotFoundError" in res.err


def test_csr_flow(ini, tmp_path, capsys):
    tree(ini, "hq")
    out_dir = str(tmp_path / "req")
    assert deptca("--config", ini, "new-csr", "svc.example", "DNS:svc.example", "--out-dir", out_dir) == 0
    res = capsys.readouterr()
    files = dict(ln.split(": ", 1) for ln in res.out.splitlines())
    assert files["csr"].startswith(out_dir)
    assert "SAN: DNS:svc.example" in res.err

    assert deptca("--config", ini, "sign-csr", "hq", "client", files["csr"], "DNS:alt.example") == 0
    res = capsys.readouterr()
    assert "hq-1000" in res.out
    assert "key:" not in res.out

    assert deptca("--config", ini, "list", "hq-1000") == 0
    res = capsys.readouterr()
    assert "=== Certificate: hq-1000 ===" in res.out
    assert "Status: Valid" in res.out
    assert "DNS:svc.example" in res.out
    assert "DNS:alt.example" in res.out

    bad = tmp_path / "bad.csr"
    bad.write_bytes(b"garbage")
    assert deptca("--config", ini, "sign-csr", "hq", "client", str(bad)) >= 1
    res = capsys.readouterr()
    assert "InvalidCSRError" in res.err


def test_revoke(ini, capsys):
    tree(ini, "hq")
    assert deptca("--config", ini, "issue", "hq", "client", "alice") == 0
    assert deptca("--config", ini, "issue", "hq", "client", "bob") == 0
    capsys.readouterr()

    assert deptca("--config", ini, "revoke", "hq", "1000") == 0
    res = capsys.readouterr()
    assert res.out.strip() == "hq-1000"
    assert "keyCompromise" in res.err

    assert deptca("--config", ini, "revoke", "hq", "hq-1001", "--reason", "superseded") == 0
    res = capsys.readouterr()
    assert "superseded" in res.err

    # repeat is reported, not failed
    assert deptca("--config", ini, "revoke", "hq", "1000") == 0
    res = capsys.readouterr()
    assert "Already revoked" in res.err

    assert deptca("--config", ini, "revoke", "hq", "4242") >= 1
    res = capsys.readouterr()
    assert "NotFoundError" in res.err
    assert deptca("--config", ini, "revoke", "hq", "1000", "--reason", "bored") >= 1
    res = capsys.readouterr()
    assert "InvalidReasonError" in res.err


def test_list(ini, capsys):
    tree(ini, "hq", "sales")
    assert deptca("--config", ini, "issue", "hq", "server", "web1") == 0
    assert deptca("--config", ini, "issue", "sales", "email", "bob", "email:bob@example.com") == 0
    assert deptca("--config", ini, "revoke", "hq", "1000") == 0
    capsys.readouterr()

    assert deptca("--config", ini, "list") == 0
    res = capsys.readouterr()
    lines = res.out.splitlines()
    assert lines[0].startswith("ID ")
    assert "Common Name" in lines[0]
    assert lines[1].startswith("---")
    assert lines[2].startswith("hq-1000 ")
    assert "Revoked" in lines[2]
    assert lines[3].startswith("sales-1000")
    assert len(lines) == 4

    assert deptca("--config", ini, "list", "--json", "--valid") == 0
    res = capsys.readouterr()
    doc = json.loads(res.out)
    assert [d["id"] for d in doc] == ["sales-1000"]
    assert doc[0]["department"] == "sales"
    assert doc[0]["status"] == "valid"
    assert doc[0]["common_name"] == "bob"

    assert deptca("--config", ini, "list", "--json", "-d", "hq") == 0
    res = capsys.readouterr()
    doc = json.loads(res.out)
    assert [(d["id"], d["status"], d["reason"]) for d in doc] == [("hq-1000", "revoked", "keyCompromise")]

    assert deptca("--config", ini, "list", "--valid", "--revoked") >= 1
    capsys.readouterr()

    assert deptca("--config", ini, "list", "--json", "hq-1000") == 0
    res = capsys.readouterr()
    assert json.loads(res.out)["serial"] == 1000

    assert deptca("--config", ini, "list", "hq-9999") >= 1
    res = capsys.readouterr()
    assert "NotFoundError" in res.err


def test_revoke_dept(ini, capsys):
    tree(ini, "hq", "ops")
    assert deptca("--config", ini, "issue", "ops", "client", "u1") == 0
    assert deptca("--config", ini, "issue", "ops", "client", "u2") == 0
    assert deptca("--config", ini, "issue", "hq", "client", "u3") == 0
    capsys.readouterr()

    assert deptca("--config", ini, "revoke-dept", "ops") == 0
    res = capsys.readouterr()
    assert "recycle-bin" in res.out
    assert "archived" in res.err

    assert deptca("--config", ini, "revoke-dept", "ops") >= 1
    res = capsys.readouterr()
    assert "NotFoundError" in res.err

    assert deptca("--config", ini, "list-depts", "--stats") == 0
    res = capsys.readouterr()
    lines = res.out.splitlines()
    assert lines[0].startswith("Department")
    assert lines[2].startswith("root ")
    assert lines[3].startswith("hq ")
    assert "Active" in lines[3]
    assert "Valid=1, Revoked=0, Expired=0" in lines[3]
    assert lines[4].startswith("ops ")
    assert "Archived" in lines[4]
    assert lines[-1] == "TOTALS: Valid=1  Revoked=0  Expired=0  (Total=1)"

    assert deptca("--config", ini, "list-depts", "--json", "--stats") == 0
    res = capsys.readouterr()
    doc = json.loads(res.out)
    names = [(a["name"], a["status"], a["integrity"]) for a in doc["authorities"]]
    assert names == [("root", "active", "ok"), ("hq", "active", "ok"), ("ops", "archived", "archived")]
    assert doc["authorities"][0]["stats"] == {"valid": 1, "revoked": 1, "expired": 0}
    assert doc["authorities"][2]["stats"] is None
    assert doc["summary"] == {"total_valid": 1, "total_revoked": 0, "total_expired": 0}

    assert deptca("--config", ini, "list-depts", "--json") == 0
    res = capsys.readouterr()
    doc = json.loads(res.out)
    assert "summary" not in doc
    assert "stats" not in doc["authorities"][0]


def test_gen_crl(ini, tmp_path, capsys):
    tree(ini, "hq")
    capsys.readouterr()
    assert deptca("--config", ini, "gen-crl", "hq") == 0
    res = capsys.readouterr()
    assert res.out.strip() == os.path.join(str(tmp_path), "ca", "departments", "hq", "crl", "hq.crl.pem")
    assert deptca("--config", ini, "gen-crl", "root") == 0
    capsys.readouterr()
    assert deptca("--config", ini, "gen-crl", "nope") >= 1
    capsys.readouterr()


def test_publish(ini, tmp_path, capsys):
    tree(ini, "hq")
    capsys.readouterr()
    assert deptca("--config", ini, "publish") == 0
    res = capsys.readouterr()
    pub = os.path.join(str(tmp_path), "public")
    assert res.out.splitlines() == [os.path.join(pub, "ca-bundle.pem"), os.path.join(pub, "crl-bundle.pem")]
    assert count_pem(read_text(os.path.join(pub, "ca-bundle.pem"))) == 2

    other = str(tmp_path / "www")
    assert deptca("--config", ini, "publish", "--public-dir", other) == 0
    capsys.readouterr()
    assert os.path.isfile(os.path.join(other, "crl", "hq.crl.pem"))


def test_render_table():
    lines = render_table(["A", "Name"], [["x", "long value"], ["yyy", "v"]])
    assert lines == [
        "A   | Name",
        "----------------",
        "x   | long value",
        "yyy | v",
    ]
