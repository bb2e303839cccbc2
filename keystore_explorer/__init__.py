"""Inspect, convert and export Java keystores, PKCS#12 files and X.509 certificates."""
import logging

from .errors import (
    CertificateLoadError,
    ConversionError,
    ExportError,
    KeystoreExplorerError,
    KeystoreLoadError,
    UnsupportedFileError,
)
from .models import (
    BasicConstraints,
    CertificateDetail,
    CertificateRecord,
    EntryKind,
    ExportFormat,
    KeystoreFormat,
    KeystoreHandle,
)
from .service import (
    certificate_detail,
    classify_file,
    convert_to_pkcs12,
    export_certificate,
    list_entries,
    load_certificates,
    load_keystore,
    open_file,
    write_pkcs12,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
