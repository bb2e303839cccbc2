"""Certificate serialization to PEM and DER."""
import re

from cryptography.hazmat.primitives import serialization

from .certificates import load_der_certificate
from .errors import CertificateLoadError, ExportError
from .models import ExportFormat

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')
MAX_FILENAME_LENGTH = 100


def _load(der):
    try:
        return load_der_certificate(der)
    except CertificateLoadError as e:
        raise ExportError("Unable to export: data is not a certificate") from e


def export_der(der: bytes) -> bytes:
    """The certificate's native encoding, byte for byte."""
    return _load(der).public_bytes(serialization.Encoding.DER)


def export_pem(der: bytes) -> bytes:
    """Base64 wrapped at 64 columns between BEGIN/END CERTIFICATE lines."""
    return _load(der).public_bytes(serialization.Encoding.PEM)


def export_chain_pem(chain) -> bytes:
    return b"".join(export_pem(der) for der in chain)


_EXPORTERS = {
    ExportFormat.PEM: export_pem,
    ExportFormat.DER: export_der,
}


def export_certificate(der: bytes, fmt=ExportFormat.PEM) -> bytes:
    try:
        exporter = _EXPORTERS[ExportFormat(fmt)]
    except ValueError:
        raise ExportError(f"Unsupported export format: {fmt}") from None
    return exporter(der)


def sanitize_alias_for_filename(alias) -> str:
    """Turn an alias into a filename-safe stem."""
    if alias is None or not alias.strip():
        return "certificate"
    return _UNSAFE_FILENAME_CHARS.sub("_", alias)[:MAX_FILENAME_LENGTH]
