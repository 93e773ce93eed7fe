"""String <> Python objects.
"""

import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple, Union

__all__ = (
    "as_bytes", "parse_serial",
    "format_ledger_time", "parse_ledger_time",
    "file_stamp", "safe_name", "valid_authority_id",
    "render_dn", "parse_dn", "render_expiry", "show_list",
)

# openssl switches from UTCTime to GeneralizedTime for year >= 2050
_UTCTIME_LIMIT = 2050

_authority_id_rc = re.compile(r"^[A-Za-z0-9._-]+$")
_unsafe_rc = re.compile(r"[^A-Za-z0-9 ._@-]")


def as_bytes(s: Union[str, bytes]) -> bytes:
    """Return byte-string.
    """
    if not isinstance(s, bytes):
        return s.encode("utf8")
    return s


def parse_serial(sval: Union[str, int]) -> int:
    """Parse decimal serial number.
    """
    if isinstance(sval, int):
        return sval
    if re.match(r"^[0-9]+$", sval.strip()):
        return int(sval.strip(), 10)
    raise ValueError("Invalid serial: %r" % sval)


def format_ledger_time(dt: datetime) -> str:
    """Render timestamp as YYMMDDHHMMSSZ, like openssl index.txt.
    """
    dt = dt.astimezone(timezone.utc)
    if dt.year >= _UTCTIME_LIMIT:
        return dt.strftime("%Y%m%d%H%M%SZ")
    return dt.strftime("%y%m%d%H%M%SZ")


def parse_ledger_time(sval: str) -> datetime:
    """Parse YYMMDDHHMMSSZ or YYYYMMDDHHMMSSZ.
    """
    if re.match(r"^\d{12}Z$", sval):
        dt = datetime.strptime(sval, "%y%m%d%H%M%SZ")
        # UTCTime rule: YY >= 50 means 19YY
        if dt.year >= _UTCTIME_LIMIT:
            dt = dt.replace(year=dt.year - 100)
    elif re.match(r"^\d{14}Z$", sval):
        dt = datetime.strptime(sval, "%Y%m%d%H%M%SZ")
    else:
        raise ValueError("Invalid ledger timestamp: %r" % sval)
    return dt.replace(tzinfo=timezone.utc)


def file_stamp(dt: Optional[datetime] = None, fine: bool = False) -> str:
    """Timestamp for file names.
    """
    if dt is None:
        dt = datetime.now(timezone.utc)
    if fine:
        return dt.strftime("%Y%m%d%H%M%S%f")
    return dt.strftime("%Y%m%d%H%M%S")


def safe_name(common_name: str) -> str:
    """Reduce Common Name to characters usable in file names.
    """
    return _unsafe_rc.sub("", common_name).strip().replace(" ", "_")


def valid_authority_id(name: str) -> bool:
    return bool(_authority_id_rc.match(name or "")) and name not in (".", "..")


# control characters would break one-line DN and tab-separated ledger
_DN_ESCAPES = {"\\": "\\\\", "/": "\\/", "\n": "\\n", "\r": "\\r", "\t": "\\t"}
_DN_UNESCAPES = {"n": "\n", "r": "\r", "t": "\t"}
_dn_unescape_rc = re.compile(r"\\(x[0-9a-fA-F]{2}|.)", re.S)


def _escape_dn_value(v: str) -> str:
    res = []
    for c in v:
        if c in _DN_ESCAPES:
            res.append(_DN_ESCAPES[c])
        elif ord(c) < 0x20 or ord(c) == 0x7f:
            res.append("\\x%02x" % ord(c))
        else:
            res.append(c)
    return "".join(res)


def _unescape_dn_value(v: str) -> str:
    def repl(m: "re.Match[str]") -> str:
        esc = m.group(1)
        if len(esc) == 3:
            return chr(int(esc[1:], 16))
        return _DN_UNESCAPES.get(esc, esc)
    return _dn_unescape_rc.sub(repl, v)


def render_dn(pairs: Sequence[Tuple[str, str]]) -> str:
    """Render (key, value) pairs in openssl one-line form: /C=XX/CN=name
    """
    return "".join("/%s=%s" % (k, _escape_dn_value(v)) for k, v in pairs)


def parse_dn(dnstr: str) -> List[Tuple[str, str]]:
    """Parse /-separated DN string into (key, value) pairs.
    """
    res: List[Tuple[str, str]] = []
    for m in re.finditer(r"/((?:[^/\\]|\\.)+)", dnstr):
        part = m.group(1)
        if "=" not in part:
            raise ValueError("Invalid DN component: %r" % part)
        k, v = part.split("=", 1)
        res.append((k.strip(), _unescape_dn_value(v.strip())))
    return res


def render_expiry(expiry: datetime, now: Optional[datetime] = None) -> str:
    """Human-readable expiry with remaining days.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    days_left = max(0, int((expiry - now).total_seconds() // 86400))
    return "%s (%3dd left)" % (expiry.strftime("%H:%M %d-%m-%Y"), days_left)


def show_list(desc: str, lst: Optional[Sequence[str]], writeln: Callable[[str], None]) -> None:
    """Print out list field.
    """
    if not lst:
        return
    if len(lst) == 1:
        writeln("%s: %s" % (desc, lst[0]))
    else:
        writeln("%s:" % desc)
        for val in lst:
            writeln("  %s" % (val,))
