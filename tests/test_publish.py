import os
import os.path

import pytest
from cryptography import x509
from helpers import count_pem, make_config, new_tree, read_text

from deptca import api as deptca


def test_publish(tmp_path):
    cfg = new_tree(tmp_path, depts=("sales", "hq"))
    layout = cfg.layout()
    res = deptca.publish(layout, cfg.public_dir)

    assert res.certificates == ["root", "hq", "sales"]
    assert res.crls == ["root", "hq", "sales"]
    assert res.skipped == []

    bundle = read_text(res.ca_bundle)
    assert count_pem(bundle) == 3
    parts = [read_text(layout.root().cert_path),
             read_text(layout.department("hq").cert_path),
             read_text(layout.department("sales").cert_path)]
    assert bundle == "".join(parts)
    first = bundle.split("-----END CERTIFICATE-----")[0] + "-----END CERTIFICATE-----\n"
    assert x509.load_pem_x509_certificate(first.encode("utf8")) == layout.root().load_cert()

    crl_bundle = read_text(res.crl_bundle)
    assert count_pem(crl_bundle, "X509 CRL") == 3
    assert crl_bundle.startswith(read_text(layout.root().crl_path))
    for auth_id in ("root", "hq", "sales"):
        fn = os.path.join(cfg.public_dir, "crl", "%s.crl.pem" % auth_id)
        assert read_text(fn) == read_text(layout.authority(auth_id).crl_path)


def test_publish_skips_inactive(tmp_path):
    cfg = new_tree(tmp_path, depts=("hq", "ops", "sales"))
    deptca.revoke_department(cfg, "ops")
    layout = cfg.layout()
    # revoked in root ledger but not archived yet
    sales = layout.department("sales")
    layout.root().ledger.mark_revoked(sales.load_cert().serial_number, "superseded")
    res = deptca.publish(layout, cfg.public_dir)
    assert res.certificates == ["root", "hq"]
    assert count_pem(read_text(res.ca_bundle)) == 2
    assert not os.path.exists(os.path.join(cfg.public_dir, "crl", "ops.crl.pem"))
    # relying parties still need the CRL of a revoked department
    assert res.crls == ["root", "hq", "sales"]
    fn = os.path.join(cfg.public_dir, "crl", "sales.crl.pem")
    assert read_text(fn) == read_text(sales.crl_path)
    assert read_text(sales.crl_path) in read_text(res.crl_bundle)


def test_publish_removes_stale_crl(tmp_path):
    cfg = new_tree(tmp_path, depts=("hq", "ops"))
    layout = cfg.layout()
    res = deptca.publish(layout, cfg.public_dir)
    assert res.removed == []
    ops_crl = os.path.join(cfg.public_dir, "crl", "ops.crl.pem")
    assert os.path.isfile(ops_crl)
    notes = os.path.join(cfg.public_dir, "crl", "README.txt")
    with open(notes, "w") as f:
        f.write("not a CRL\n")

    deptca.revoke_department(cfg, "ops")
    res = deptca.publish(layout, cfg.public_dir)
    assert res.removed == ["ops"]
    assert res.crls == ["root", "hq"]
    assert not os.path.exists(ops_crl)
    assert os.path.isfile(notes)
    assert count_pem(read_text(res.crl_bundle), "X509 CRL") == 2


def test_publish_broken_department(tmp_path):
    cfg = new_tree(tmp_path, depts=("hq", "sales"))
    layout = cfg.layout()
    os.unlink(layout.department("sales").cert_path)
    os.unlink(layout.department("hq").crl_path)
    res = deptca.publish(layout, cfg.public_dir)
    assert res.certificates == ["root", "hq"]
    assert res.skipped == ["sales"]
    assert res.crls == ["root"]
    assert count_pem(read_text(res.crl_bundle), "X509 CRL") == 1


def test_publish_refreshes(tmp_path):
    cfg = new_tree(tmp_path)
    layout = cfg.layout()
    deptca.publish(layout, cfg.public_dir)
    deptca.issue_new(cfg, "hq", "server", "web1")
    deptca.revoke_certificate(cfg, "hq", 1000)
    deptca.publish(layout, cfg.public_dir)
    crl = deptca.load_crl(os.path.join(cfg.public_dir, "crl", "hq.crl.pem"))
    assert deptca.crl_serials(crl) == [1000]
    leftovers = [fn for fn in os.listdir(cfg.public_dir) if fn.startswith(".tmp-")]
    assert leftovers == []


def test_publish_without_root(tmp_path):
    cfg = make_config(tmp_path)
    with pytest.raises(deptca.MissingRootError):
        deptca.publish(cfg.layout(), cfg.public_dir)
