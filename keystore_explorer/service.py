"""
High level operations used by the app.

Every function accepts a path, raw bytes, or a file-like object such as the
``UploadedFile`` Streamlit hands out.
"""
import logging
import os
from typing import List, Optional, Tuple, Union

from . import converter, export, keystore
from .certificates import parse_certificates
from .detail import certificate_detail as _certificate_detail
from .errors import CertificateLoadError, KeystoreLoadError, UnsupportedFileError
from .export import sanitize_alias_for_filename
from .models import (
    CertificateDetail,
    CertificateRecord,
    ExportFormat,
    KeystoreHandle,
)

logger = logging.getLogger(__name__)

KEYSTORE_EXTENSIONS = keystore.KEYSTORE_EXTENSIONS
CERTIFICATE_EXTENSIONS = (".cert", ".crt", ".cer", ".pem", ".der", ".p7b", ".p7c", ".spc")

KEYSTORE = "keystore"
CERTIFICATE = "certificate"


def _read_source(source) -> Tuple[bytes, str]:
    """Return ``(data, filename)`` for a path, bytes or file-like object."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source), ""
    if isinstance(source, (str, os.PathLike)):
        with open(source, "rb") as f:
            return f.read(), os.path.basename(os.fspath(source))
    name = os.path.basename(getattr(source, "name", "") or "")
    if hasattr(source, "getvalue"):
        return bytes(source.getvalue()), name
    return bytes(source.read()), name


def classify_file(filename: str) -> Optional[str]:
    """Tell keystores from certificate files by extension; ``None`` if unknown."""
    extension = os.path.splitext(filename or "")[1].lower()
    if extension in KEYSTORE_EXTENSIONS:
        return KEYSTORE
    if extension in CERTIFICATE_EXTENSIONS:
        return CERTIFICATE
    return None


def load_keystore(source, password: Optional[str] = None) -> KeystoreHandle:
    data, filename = _read_source(source)
    return keystore.load_keystore(data, filename, password)


def list_entries(handle: KeystoreHandle) -> List[CertificateRecord]:
    return keystore.list_entries(handle)


def load_certificates(source) -> List[CertificateRecord]:
    data, filename = _read_source(source)
    return parse_certificates(data, filename)


def open_file(source, password: Optional[str] = None) -> Union[KeystoreHandle, List[CertificateRecord]]:
    """
    Open any supported file.

    Known extensions go straight to the matching loader. For anything else
    the contents are tried as certificates first and then as a keystore.

    Returns:
        A KeystoreHandle for keystores, a list of records for certificate files

    Raises:
        KeystoreLoadError, CertificateLoadError: From the matching loader
        UnsupportedFileError: When an unknown file is neither
    """
    data, filename = _read_source(source)
    kind = classify_file(filename)
    if kind == KEYSTORE:
        return keystore.load_keystore(data, filename, password)
    if kind == CERTIFICATE:
        return parse_certificates(data, filename)

    try:
        return parse_certificates(data, filename)
    except CertificateLoadError as e:
        logger.debug("%s is not a certificate file: %s", filename, e)
    try:
        return keystore.load_keystore(data, filename, password)
    except KeystoreLoadError as e:
        raise UnsupportedFileError(f"Unsupported file: {filename or 'unnamed'}") from e


def certificate_detail(handle_or_records, alias: str) -> CertificateDetail:
    """
    Detail view of the certificate behind ``alias``.

    ``handle_or_records`` is an opened handle, records from
    :func:`load_certificates`, or a certificate file to parse first.

    Raises:
        KeyError: If no entry or record has that alias, or it has no certificate
    """
    if isinstance(handle_or_records, KeystoreHandle):
        der = handle_or_records.get(alias).leaf
    else:
        records = handle_or_records
        if not isinstance(records, (list, tuple)):
            records = load_certificates(records)
        der = next((r.certificate for r in records if r.alias == alias), None)
        if der is None and all(r.alias != alias for r in records):
            raise KeyError(f"No entry with alias '{alias}'")
    if der is None:
        raise KeyError(f"Entry '{alias}' has no certificate")
    return _certificate_detail(der)


def convert_to_pkcs12(handle: KeystoreHandle, keystore_password: Optional[str] = None,
                      key_password: Optional[str] = None) -> KeystoreHandle:
    return converter.convert_to_pkcs12(handle, keystore_password, key_password)


def write_pkcs12(handle: KeystoreHandle, keystore_password: Optional[str] = None) -> bytes:
    return converter.write_pkcs12(handle, keystore_password)


def export_certificate(der: bytes, fmt=ExportFormat.PEM) -> bytes:
    return export.export_certificate(der, fmt)


def export_chain(chain) -> bytes:
    """PEM bundle of a key entry's chain, leaf first."""
    return export.export_chain_pem(chain)


def export_filename(alias: str, fmt=ExportFormat.PEM) -> str:
    extension = ".der" if ExportFormat(fmt) is ExportFormat.DER else ".pem"
    return sanitize_alias_for_filename(alias) + extension
