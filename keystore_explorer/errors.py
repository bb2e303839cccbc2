"""Typed failures raised by the keystore and certificate services.

Every public operation reports failure through one of these types, with the
originating exception chained as ``__cause__`` so callers can inspect it.
"""

_PASSWORD_HINTS = (
    "password",
    "hash mismatch",
    "mac verification",
    "bad decrypt",
    "decryption failure",
    "wrong password",
)


class KeystoreExplorerError(Exception):
    """Base class for all errors raised by keystore_explorer."""


class KeystoreLoadError(KeystoreExplorerError):
    """Wrong password, unrecognized or corrupt container, or unsupported format."""


class UnsupportedFileError(KeystoreLoadError):
    """A file that is neither a keystore nor a certificate bundle."""


class CertificateLoadError(KeystoreExplorerError):
    """Bytes that do not decode as any supported certificate encoding."""


class ConversionError(KeystoreExplorerError):
    """A keystore could not be converted (missing key or chain, crypto failure)."""


class ExportError(KeystoreExplorerError):
    """A certificate could not be serialized."""


class Pkcs12Error(KeystoreExplorerError):
    """Malformed PKCS#12 data or a failed integrity check."""


class UnsupportedAlgorithmError(Pkcs12Error):
    """A PKCS#12 protection algorithm the codec does not decode."""


def looks_like_password_error(exc):
    """Best-effort check of an exception chain for a password related cause.

    Most crypto libraries report a wrong password and a corrupt file the same
    way, so a ``False`` result proves nothing.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        message = str(exc).lower()
        if any(hint in message for hint in _PASSWORD_HINTS):
            return True
        exc = exc.__cause__ or exc.__context__
    return False
