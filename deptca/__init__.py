"""DeptCA - Root and department certificate authorities with a ledger.
"""

# pylint: disable=import-outside-toplevel

__version__ = "1.0"


def _version_info() -> str:
    """Package, cryptography and OpenSSL versions for --version.
    """
    import cryptography
    from cryptography.hazmat.backends.openssl.backend import backend
    return "%s (cryptography %s, %s)" % (
        __version__, cryptography.__version__, backend.openssl_version_text())


FULL_VERSION = _version_info()
