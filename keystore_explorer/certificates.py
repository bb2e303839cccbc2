"""
Certificate parsing for loose files: single DER/PEM certificates, PEM bundles
and PKCS#7 bundles (DER or PEM armored).
"""
import base64
import binascii
import logging
import re
from typing import List

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from .encoding import serial_to_hex
from .errors import CertificateLoadError
from .models import CertificateRecord, EntryKind

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----(.*?)-----END \1-----", re.DOTALL
)
_CERTIFICATE_LABELS = {b"CERTIFICATE", b"X509 CERTIFICATE", b"TRUSTED CERTIFICATE"}
_PKCS7_LABELS = {b"PKCS7", b"CERTIFICATE CHAIN"}

# Java names for the common signature algorithms, keyed by dotted OID
SIGNATURE_ALGORITHM_NAMES = {
    "1.2.840.113549.1.1.2": "MD2withRSA",
    "1.2.840.113549.1.1.4": "MD5withRSA",
    "1.2.840.113549.1.1.5": "SHA1withRSA",
    "1.2.840.113549.1.1.10": "RSASSA-PSS",
    "1.2.840.113549.1.1.11": "SHA256withRSA",
    "1.2.840.113549.1.1.12": "SHA384withRSA",
    "1.2.840.113549.1.1.13": "SHA512withRSA",
    "1.2.840.113549.1.1.14": "SHA224withRSA",
    "1.2.840.10040.4.3": "SHA1withDSA",
    "2.16.840.1.101.3.4.3.1": "SHA224withDSA",
    "2.16.840.1.101.3.4.3.2": "SHA256withDSA",
    "1.2.840.10045.4.1": "SHA1withECDSA",
    "1.2.840.10045.4.3.1": "SHA224withECDSA",
    "1.2.840.10045.4.3.2": "SHA256withECDSA",
    "1.2.840.10045.4.3.3": "SHA384withECDSA",
    "1.2.840.10045.4.3.4": "SHA512withECDSA",
    "1.3.101.112": "Ed25519",
    "1.3.101.113": "Ed448",
}


def signature_algorithm_name(cert: x509.Certificate) -> str:
    oid = cert.signature_algorithm_oid
    name = SIGNATURE_ALGORITHM_NAMES.get(oid.dotted_string)
    if name:
        return name
    fallback = getattr(oid, "_name", "")
    if fallback and fallback != "Unknown OID":
        return fallback
    return oid.dotted_string


def subject_name(cert: x509.Certificate) -> str:
    try:
        return cert.subject.rfc4514_string()
    except ValueError:
        return ""


def record_from_certificate(cert: x509.Certificate, alias: str, entry_kind: EntryKind) -> CertificateRecord:
    return CertificateRecord(
        alias=alias,
        entry_kind=entry_kind,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        signature_algorithm=signature_algorithm_name(cert),
        serial_number=serial_to_hex(cert.serial_number),
        certificate=cert.public_bytes(serialization.Encoding.DER),
    )


def load_der_certificate(der: bytes) -> x509.Certificate:
    """Decode one DER certificate, raising CertificateLoadError on failure."""
    try:
        return x509.load_der_x509_certificate(bytes(der))
    except (ValueError, TypeError) as e:
        raise CertificateLoadError("Not a DER-encoded X.509 certificate") from e


def _decode_pem_blocks(blocks):
    certs = []
    for label, body in blocks:
        if label not in _CERTIFICATE_LABELS and label not in _PKCS7_LABELS:
            logger.debug("Skipping PEM block %s", label.decode("ascii", "replace"))
            continue
        try:
            der = base64.b64decode(b"".join(body.split()), validate=True)
        except binascii.Error as e:
            raise CertificateLoadError("Invalid base64 in PEM block") from e
        if label in _PKCS7_LABELS:
            certs.extend(pkcs7.load_der_pkcs7_certificates(der))
        else:
            certs.append(x509.load_der_x509_certificate(der))
    return certs


def decode_certificates(data: bytes) -> List[x509.Certificate]:
    """
    Decode every certificate in ``data`` without a format hint.

    PEM armor is looked for first, then a PKCS#7 SignedData structure, then a
    single DER certificate; each failed attempt falls through to the next.

    Args:
        data: Raw file contents

    Returns:
        Certificates in source order

    Raises:
        CertificateLoadError: If no supported encoding yields a certificate
    """
    data = bytes(data or b"")
    if not data.strip():
        raise CertificateLoadError("No certificate data")

    errors = []
    blocks = _PEM_BLOCK.findall(data)
    if blocks:
        try:
            certs = _decode_pem_blocks(blocks)
        except CertificateLoadError:
            raise
        except Exception as e:
            raise CertificateLoadError("Unable to decode PEM certificate data") from e
        if certs:
            return certs
        raise CertificateLoadError("PEM data contains no certificates")

    try:
        certs = pkcs7.load_der_pkcs7_certificates(data)
        if certs:
            return list(certs)
    except Exception as e:
        errors.append(e)

    try:
        return [x509.load_der_x509_certificate(data)]
    except Exception as e:
        errors.append(e)

    logger.debug("No certificate decoder accepted the data: %s", errors)
    raise CertificateLoadError("Data is not a PEM, PKCS#7 or DER certificate") from errors[-1]


def parse_certificates(data: bytes, filename: str = "") -> List[CertificateRecord]:
    """
    Parse certificate file contents into table records.

    The alias of each record is the certificate's subject, or
    ``"<filename>#<index>"`` when the subject is empty. The index is 1-based
    and counts emitted records only.
    """
    records = []
    for cert in decode_certificates(data):
        if not isinstance(cert, x509.Certificate):
            continue
        index = len(records) + 1
        alias = subject_name(cert) or f"{filename}#{index}"
        try:
            records.append(record_from_certificate(cert, alias, EntryKind.CERTIFICATE))
        except ValueError as e:
            raise CertificateLoadError(f"Unable to read certificate #{index}") from e
    return records
