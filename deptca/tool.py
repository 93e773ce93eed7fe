"""Command-line UI for DeptCA.
"""

import argparse
import json
import logging
import os.path
import sys
from typing import (
    TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Type, TypedDict, Union,
)

from cryptography import x509

from .api import (
    CASCADE_REASON, CRL_REASON, DEFAULT_REASON, FULL_VERSION, PROFILES,
    AlreadyRevokedError, AuthorityInfo, CertificateRecord, Config, IssuedCertificate, PKIError,
    bootstrap_root, create_csr, create_department, extract_gnames,
    global_totals, issue_from_csr, issue_new, list_authorities,
    list_certificates, load_cert, load_config, lookup, publish,
    regenerate_crl, render_expiry, revoke_certificate, revoke_department,
)
from .formats import show_list
from .profiles import csr_sans

__all__ = ("main", "run_deptca")

QUIET = False

# pylint: disable=protected-access
if TYPE_CHECKING:
    SubParser = argparse._SubParsersAction[argparse.ArgumentParser]
else:
    SubParser = argparse._SubParsersAction
GParser = Union[argparse.ArgumentParser, argparse._ArgumentGroup]


#
# Command-line UI
#


def die(txt: str, *args: Any) -> None:
    """Print message and exit.
    """
    if args:
        txt = txt % args
    sys.stderr.write(txt + "\n")
    sys.exit(1)


def msg(txt: str, *args: Any) -> None:
    """Print message to stderr.
    """
    if QUIET:
        return
    if args:
        txt = txt % args
    sys.stderr.write(txt + "\n")


def out(txt: str, *args: Any) -> None:
    """Print result line to stdout.
    """
    if args:
        txt = txt % args
    sys.stdout.write(txt + "\n")


def setup_logging(args: argparse.Namespace) -> None:
    """Library logs go to stderr.
    """
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    logging.getLogger("deptca").setLevel(level)


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[str]:
    """Left-aligned columns separated by '|'.
    """
    widths = [len(h) for h in headers]
    for row in rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))

    def fmt(row: Sequence[str]) -> str:
        cols = ["%-*s" % (widths[i], val) for i, val in enumerate(row[:-1])]
        return " | ".join(cols + [row[-1]])

    lines = [fmt(headers), "-" * (sum(widths) + 3 * (len(widths) - 1))]
    lines.extend(fmt(row) for row in rows)
    return lines


def bootstrap_command(args: argparse.Namespace, cfg: Config) -> None:
    """Create root CA.
    """
    root = bootstrap_root(cfg)
    msg("Root CA ready at %s", root.directory)
    out(root.cert_path)


def new_dept_command(args: argparse.Namespace, cfg: Config) -> None:
    """Create department CA.
    """
    dept = create_department(cfg, args.dept)
    msg("Department CA '%s' ready at %s", dept.id, dept.directory)
    out(dept.cert_path)


def _report_issued(res: IssuedCertificate) -> None:
    msg("Issued %s, serial %d, profile %s", res.composite_id, res.serial, res.profile)
    if res.key_path:
        out("key:       %s", res.key_path)
    out("cert:      %s", res.cert_path)
    out("fullchain: %s", res.fullchain_path)
    out("id:        %s", res.composite_id)


def issue_command(args: argparse.Namespace, cfg: Config) -> None:
    """Issue new key and certificate.
    """
    res = issue_new(cfg, args.dept, args.profile, args.cn, args.san)
    _report_issued(res)


def sign_csr_command(args: argparse.Namespace, cfg: Config) -> None:
    """Sign existing request.
    """
    with open(args.csr, "rb") as f:
        data = f.read()
    res = issue_from_csr(cfg, args.dept, args.profile, data, args.san)
    _report_issued(res)


def new_csr_command(args: argparse.Namespace, cfg: Config) -> None:
    """Create key and request for signing elsewhere.
    """
    res = create_csr(cfg, args.cn, args.san, out_dir=args.out_dir, unit=args.unit)
    out("key: %s", res.key_path)
    out("csr: %s", res.csr_path)
    show_list("SAN", extract_gnames(csr_sans(res.request)), msg)


def revoke_command(args: argparse.Namespace, cfg: Config) -> None:
    """Revoke one certificate.
    """
    target: Union[int, str] = args.target
    if isinstance(target, str) and target.startswith(args.dept + "-") and target[len(args.dept) + 1:].isdigit():
        target = int(target[len(args.dept) + 1:])
    entry = revoke_certificate(cfg, args.dept, target, args.reason)
    msg("Revoked %s-%d (%s)", args.dept, entry.serial, entry.reason)
    out("%s-%d", args.dept, entry.serial)


def revoke_dept_command(args: argparse.Namespace, cfg: Config) -> None:
    """Revoke department and everything it issued.
    """
    dest = revoke_department(cfg, args.dept, args.reason)
    msg("Department '%s' revoked and archived", args.dept)
    out(dest)


def gen_crl_command(args: argparse.Namespace, cfg: Config) -> None:
    """Regenerate CRL.
    """
    regenerate_crl(cfg, args.authority)
    auth = cfg.layout().authority(args.authority)
    out(auth.crl_path)


def _cert_json(rec: CertificateRecord) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "department": rec.authority,
        "serial": rec.serial,
        "status": rec.status,
        "expiry": rec.expiry.isoformat(),
        "common_name": rec.common_name,
        "subject": rec.subject,
        "cert_path": rec.cert_path,
        "revoked_at": rec.revoked_at.isoformat() if rec.revoked_at else None,
        "reason": rec.reason,
    }


def show_certificate(rec: CertificateRecord) -> None:
    out("=== Certificate: %s ===", rec.id)
    out("Authority: %s", rec.authority)
    out("Serial: %d", rec.serial)
    out("Status: %s", rec.status.capitalize())
    out("Subject: %s", rec.subject)
    out("Expiry: %s", render_expiry(rec.expiry))
    if rec.revoked_at:
        out("Revoked: %s (%s)", rec.revoked_at.isoformat(" "), rec.reason or "unspecified")
    out("Path: %s", rec.cert_path)
    if os.path.isfile(rec.cert_path):
        cert = load_cert(rec.cert_path)
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
            show_list("SAN", extract_gnames(san), out)
        except x509.ExtensionNotFound:
            pass


def list_command(args: argparse.Namespace, cfg: Config) -> None:
    """List certificates.
    """
    layout = cfg.layout()
    if args.id:
        rec = lookup(layout, args.id)
        if args.json:
            out(json.dumps(_cert_json(rec), indent=2))
        else:
            show_certificate(rec)
        return

    recs = list_certificates(layout, dept=args.dept, status=args.status)
    if args.json:
        out(json.dumps([_cert_json(r) for r in recs], indent=2))
        return
    rows = [[r.id, r.authority, r.status.capitalize(), render_expiry(r.expiry), r.common_name, r.cert_path]
            for r in recs]
    for ln in render_table(["ID", "Department", "Status", "Expiry", "Common Name", "Path"], rows):
        out(ln)


def _authority_json(info: AuthorityInfo, stats: bool) -> Dict[str, Any]:
    res: Dict[str, Any] = {
        "name": info.id,
        "role": info.role,
        "status": info.state,
        "integrity": info.integrity,
        "dir": info.path,
    }
    if stats:
        res["stats"] = info.counts._asdict() if info.counts else None
    return res


def list_depts_command(args: argparse.Namespace, cfg: Config) -> None:
    """List authorities.
    """
    infos = list_authorities(cfg.layout(), with_counts=args.stats)
    totals = global_totals(infos)
    if args.json:
        doc: Dict[str, Any] = {"authorities": [_authority_json(i, args.stats) for i in infos]}
        if args.stats:
            doc["summary"] = {
                "total_valid": totals.valid,
                "total_revoked": totals.revoked,
                "total_expired": totals.expired,
            }
        out(json.dumps(doc, indent=2))
        return

    headers = ["Department", "Status", "Integrity"]
    if args.stats:
        headers.append("Stats")
    headers.append("Path")
    rows = []
    for info in infos:
        row = [info.id, info.state.capitalize(), info.integrity.capitalize()]
        if args.stats:
            if info.counts is None:
                row.append("-")
            else:
                row.append("Valid=%d, Revoked=%d, Expired=%d" % info.counts)
        row.append(info.path)
        rows.append(row)
    for ln in render_table(headers, rows):
        out(ln)
    if args.stats:
        out("TOTALS: Valid=%d  Revoked=%d  Expired=%d  (Total=%d)",
            totals.valid, totals.revoked, totals.expired, totals.total)


def publish_command(args: argparse.Namespace, cfg: Config) -> None:
    """Write public bundles.
    """
    res = publish(cfg.layout(), args.public_dir or cfg.public_dir)
    for auth_id in res.skipped:
        msg("Warning: certificate not found for department %s", auth_id)
    msg("CA bundle: %s (%d certificates)", res.ca_bundle, len(res.certificates))
    for auth_id in res.removed:
        msg("Removed stale CRL of %s", auth_id)
    msg("CRL bundle: %s (%d CRLs)", res.crl_bundle, len(res.crls))
    out(res.ca_bundle)
    out(res.crl_bundle)


#
# argparse setup
#


def opts_top(p: GParser) -> None:
    p.add_argument("-V", "--version", action="version", version="%(prog)s " + FULL_VERSION,
                   help="Show version and exit")
    p.add_argument("-q", "--quiet", action="store_true",
                   help="Be quiet")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Show debug messages")
    p.add_argument("--config", metavar="INI_FILE",
                   help="Config file.  Default: $DEPTCA_CONFIG")


def opts_dept(p: GParser) -> None:
    p.add_argument("dept", help="Department id")


def opts_profile(p: GParser) -> None:
    p.add_argument("profile", help="Certificate profile: %s" % ", ".join(PROFILES))


def opts_san(p: GParser) -> None:
    p.add_argument("san", nargs="*", metavar="SAN",
                   help="SubjectAltNames - DNS:host, IP:addr, email:addr, URI:url")


def opts_reason(p: GParser, default: str) -> None:
    p.add_argument("--reason", default=default,
                   help="Reason for revocation: %s.  Default: %s" % (", ".join(CRL_REASON.keys()), default))


class CustomFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=26)


class HelpArgs(TypedDict):
    help: str
    description: str
    formatter_class: Type[argparse.HelpFormatter]


def loadhelp(func: Callable[[SubParser], None]) -> HelpArgs:
    """Convert docstring to add_parser() args
    """
    doc = (func.__doc__ or "").strip()
    return {
        "help": doc,
        "description": doc,
        "formatter_class": CustomFormatter,
    }


def setup_args_bootstrap(sub: SubParser) -> None:
    """Create root CA key, certificate and CRL.
    """
    p = sub.add_parser("bootstrap", **loadhelp(setup_args_bootstrap))
    p.set_defaults(command=bootstrap_command)


def setup_args_new_dept(sub: SubParser) -> None:
    """Create department CA signed by root.
    """
    p = sub.add_parser("new-dept", **loadhelp(setup_args_new_dept))
    p.set_defaults(command=new_dept_command)
    opts_dept(p)


def setup_args_issue(sub: SubParser) -> None:
    """Generate key and issue certificate from department CA.
    """
    p = sub.add_parser("issue", **loadhelp(setup_args_issue))
    p.set_defaults(command=issue_command)
    opts_dept(p)
    opts_profile(p)
    p.add_argument("cn", help="Common Name")
    opts_san(p)


def setup_args_sign_csr(sub: SubParser) -> None:
    """Issue certificate for existing request.
    """
    p = sub.add_parser("sign-csr", **loadhelp(setup_args_sign_csr))
    p.set_defaults(command=sign_csr_command)
    opts_dept(p)
    opts_profile(p)
    p.add_argument("csr", metavar="CSR_FILE", help="Certificate request, PEM or DER")
    opts_san(p)


def setup_args_new_csr(sub: SubParser) -> None:
    """Create key and certificate request.
    """
    p = sub.add_parser("new-csr", **loadhelp(setup_args_new_csr))
    p.set_defaults(command=new_csr_command)
    p.add_argument("cn", help="Common Name")
    opts_san(p)
    p.add_argument("--out-dir", metavar="DIR", default=".",
                   help="Directory for key and request.  Default: current directory")
    p.add_argument("--unit", metavar="OU", help="Organizational unit for subject")


def setup_args_revoke(sub: SubParser) -> None:
    """Revoke certificate and regenerate CRL.
    """
    p = sub.add_parser("revoke", **loadhelp(setup_args_revoke))
    p.set_defaults(command=revoke_command)
    opts_dept(p)
    p.add_argument("target", metavar="SERIAL|PATH", help="Serial, certificate id or certificate file")
    opts_reason(p, DEFAULT_REASON)


def setup_args_revoke_dept(sub: SubParser) -> None:
    """Revoke department CA with all its certificates and archive it.
    """
    p = sub.add_parser("revoke-dept", **loadhelp(setup_args_revoke_dept))
    p.set_defaults(command=revoke_dept_command)
    opts_dept(p)
    opts_reason(p, CASCADE_REASON)


def setup_args_gen_crl(sub: SubParser) -> None:
    """Regenerate CRL for root or department.
    """
    p = sub.add_parser("gen-crl", **loadhelp(setup_args_gen_crl))
    p.set_defaults(command=gen_crl_command)
    p.add_argument("authority", help="Authority id: root or department")


def setup_args_list(sub: SubParser) -> None:
    """List certificates or show one by id.
    """
    p = sub.add_parser("list", **loadhelp(setup_args_list))
    p.set_defaults(command=list_command, status=None)
    p.add_argument("id", nargs="?", help="Certificate id: <dept>-<serial>")
    p.add_argument("-d", "--dept", help="Only certificates of department")
    g = p.add_mutually_exclusive_group()
    g.add_argument("--valid", dest="status", action="store_const", const="valid",
                   help="Only valid certificates")
    g.add_argument("--revoked", dest="status", action="store_const", const="revoked",
                   help="Only revoked certificates")
    g.add_argument("--expired", dest="status", action="store_const", const="expired",
                   help="Only expired certificates")
    p.add_argument("--json", action="store_true", help="Output JSON")


def setup_args_list_depts(sub: SubParser) -> None:
    """List root and department CAs.
    """
    p = sub.add_parser("list-depts", **loadhelp(setup_args_list_depts))
    p.set_defaults(command=list_depts_command)
    p.add_argument("--json", action="store_true", help="Output JSON")
    p.add_argument("--stats", action="store_true",
                   help="Include valid/revoked/expired counts and totals")


def setup_args_publish(sub: SubParser) -> None:
    """Write CA bundle, CRL bundle and CRLs to public directory.
    """
    p = sub.add_parser("publish", **loadhelp(setup_args_publish))
    p.set_defaults(command=publish_command)
    p.add_argument("--public-dir", metavar="DIR", help="Output directory.  Default: from config")


#
# top-level parser
#


def setup_args() -> argparse.ArgumentParser:
    """Create ArgumentParser
    """
    top = argparse.ArgumentParser(
        prog="deptca",
        description="Run any COMMAND with --help switch to get command-specific help.",
        fromfile_prefix_chars="@",
        allow_abbrev=False,
        formatter_class=CustomFormatter,
    )
    opts_top(top)

    sub = top.add_subparsers(metavar="COMMAND")
    setup_args_bootstrap(sub)
    setup_args_new_dept(sub)
    setup_args_issue(sub)
    setup_args_sign_csr(sub)
    setup_args_new_csr(sub)
    setup_args_revoke(sub)
    setup_args_revoke_dept(sub)
    setup_args_gen_crl(sub)
    setup_args_list(sub)
    setup_args_list_depts(sub)
    setup_args_publish(sub)
    return top


def run_deptca(argv: Sequence[str], cfg: Optional[Config] = None) -> None:
    """Load arguments, select and run command.
    """
    global QUIET

    args = setup_args().parse_args(argv)
    if not hasattr(args, "command"):
        die("Need command")

    QUIET = bool(args.quiet)
    setup_logging(args)

    try:
        if cfg is None:
            cfg = load_config(args.config)
        args.command(args, cfg)
    except AlreadyRevokedError as ex:
        msg("Already revoked: %s", ex)
    except PKIError as ex:
        die("ERROR: %s: %s", type(ex).__name__, ex)
    except (ValueError, OSError) as ex:
        die("ERROR: %s", ex)


def main() -> None:
    """Command-line application entry point.
    """
    try:
        return run_deptca(sys.argv[1:])
    except (BrokenPipeError, KeyboardInterrupt):
        sys.exit(1)


if __name__ == "__main__":
    main()
