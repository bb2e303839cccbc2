"""Expanded detail view of a single certificate."""
import logging

from cryptography import x509

from . import extensions
from .certificates import load_der_certificate
from .encoding import fingerprint
from .models import (
    KEY_USAGE_NAMES,
    UNLIMITED_PATH_LENGTH,
    BasicConstraints,
    CertificateDetail,
)

logger = logging.getLogger(__name__)


def _extension(cert, extension_class):
    try:
        return cert.extensions.get_extension_for_class(extension_class).value
    except x509.ExtensionNotFound:
        return None


def _general_name_to_str(name) -> str:
    if isinstance(name, x509.DirectoryName):
        return name.value.rfc4514_string()
    if isinstance(name, x509.RegisteredID):
        return name.value.dotted_string
    if isinstance(name, x509.OtherName):
        return f"{name.type_id.dotted_string}:{name.value.hex().upper()}"
    return str(name.value)


def subject_alt_names(cert: x509.Certificate):
    san = _extension(cert, x509.SubjectAlternativeName)
    if san is None:
        return ()
    return tuple(_general_name_to_str(name) for name in san)


def key_usage(cert: x509.Certificate):
    ku = _extension(cert, x509.KeyUsage)
    if ku is None:
        return ()
    bits = [
        ku.digital_signature,
        ku.content_commitment,
        ku.key_encipherment,
        ku.data_encipherment,
        ku.key_agreement,
        ku.key_cert_sign,
        ku.crl_sign,
        # only defined when keyAgreement is asserted
        ku.key_agreement and ku.encipher_only,
        ku.key_agreement and ku.decipher_only,
    ]
    return tuple(name for name, bit in zip(KEY_USAGE_NAMES, bits) if bit)


def extended_key_usage(cert: x509.Certificate):
    eku = _extension(cert, x509.ExtendedKeyUsage)
    if eku is None:
        return ()
    return tuple(oid.dotted_string for oid in eku)


def basic_constraints(cert: x509.Certificate) -> BasicConstraints:
    bc = _extension(cert, x509.BasicConstraints)
    if bc is None or not bc.ca:
        return BasicConstraints(-1)
    if bc.path_length is None:
        return BasicConstraints(UNLIMITED_PATH_LENGTH)
    return BasicConstraints(bc.path_length)


def certificate_detail(der: bytes) -> CertificateDetail:
    """
    Compute the detail view for one DER-encoded certificate.

    Absent extensions yield empty values rather than errors. When
    ``cryptography`` rejects the extension list, each extension is decoded
    on its own by :func:`extensions.read_extensions`.

    Raises:
        CertificateLoadError: If ``der`` is not a certificate
    """
    cert = load_der_certificate(der)
    encoded = bytes(der)
    try:
        cert.extensions
    except (ValueError, x509.DuplicateExtension, x509.UnsupportedGeneralNameType):
        logger.debug("cryptography rejected the extension list, decoding extensions one by one", exc_info=True)
        extension_fields = extensions.read_extensions(encoded)
    else:
        extension_fields = dict(
            subject_alt_names=subject_alt_names(cert),
            key_usage=key_usage(cert),
            extended_key_usage=extended_key_usage(cert),
            basic_constraints=basic_constraints(cert),
        )
    return CertificateDetail(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        fingerprint_md5=fingerprint(encoded, "MD5"),
        fingerprint_sha1=fingerprint(encoded, "SHA-1"),
        fingerprint_sha256=fingerprint(encoded, "SHA-256"),
        **extension_fields,
    )
