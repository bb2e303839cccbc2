"""Certificate extensions decoded one at a time with pyasn1.

``cryptography`` parses a certificate's extensions all at once and rejects
the whole list when one of them breaks its rules, e.g. a keyUsage asserting
encipherOnly without keyAgreement. This reader takes the raw extensions from
the TBSCertificate instead, so a bad extension only loses itself.
"""
import ipaddress
import logging

from cryptography import x509
from pyasn1.codec.ber import decoder
from pyasn1.error import PyAsn1Error
from pyasn1_modules import rfc5280

from .models import KEY_USAGE_NAMES, UNLIMITED_PATH_LENGTH, BasicConstraints

logger = logging.getLogger(__name__)


def _decode(data, spec):
    value, rest = decoder.decode(data, asn1Spec=spec)
    if rest:
        raise PyAsn1Error(f"Unexpected trailing data after {spec.__class__.__name__}")
    return value


def raw_extensions(der: bytes) -> dict:
    """Map of dotted OID to ``extnValue`` bytes; the first of duplicates wins."""
    cert = _decode(bytes(der), rfc5280.Certificate())
    extensions = cert['tbsCertificate'].getComponentByName('extensions', default=None, instantiate=False)
    found = {}
    if extensions is None:
        return found
    for extension in extensions:
        found.setdefault(str(extension['extnID']), extension['extnValue'].asOctets())
    return found


def _attribute_value(value):
    decoded, _ = decoder.decode(value.asOctets())
    return str(decoded)


def name_to_str(name) -> str:
    rdns = []
    for rdn in name['rdnSequence']:
        rdns.append(x509.RelativeDistinguishedName([
            x509.NameAttribute(x509.ObjectIdentifier(str(atv['type'])), _attribute_value(atv['value']))
            for atv in rdn
        ]))
    return x509.Name(rdns).rfc4514_string()


def _general_name_to_str(general_name):
    kind = general_name.getName()
    value = general_name.getComponent()
    if kind in ("dNSName", "rfc822Name", "uniformResourceIdentifier"):
        return str(value)
    if kind == "iPAddress":
        return str(ipaddress.ip_address(value.asOctets()))
    if kind == "registeredID":
        return str(value)
    if kind == "directoryName":
        return name_to_str(value)
    if kind == "otherName":
        return f"{value['type-id']}:{value['value'].asOctets().hex().upper()}"
    raise ValueError(f"Unsupported general name type {kind}")


def subject_alt_names(value: bytes):
    names = []
    for general_name in _decode(value, rfc5280.SubjectAltName()):
        try:
            names.append(_general_name_to_str(general_name))
        except (PyAsn1Error, ValueError):
            logger.debug("Skipping unreadable subject alternative name", exc_info=True)
    return tuple(names)


def key_usage(value: bytes):
    # positional, like java.security.cert.X509Certificate#getKeyUsage
    bits = _decode(value, rfc5280.KeyUsage()).asBinary()
    return tuple(name for name, bit in zip(KEY_USAGE_NAMES, bits) if bit == "1")


def extended_key_usage(value: bytes):
    return tuple(str(oid) for oid in _decode(value, rfc5280.ExtKeyUsageSyntax()))


def basic_constraints(value: bytes) -> BasicConstraints:
    bc = _decode(value, rfc5280.BasicConstraints())
    if not bc['cA']:
        return BasicConstraints(-1)
    path_length = bc.getComponentByName('pathLenConstraint', default=None, instantiate=False)
    if path_length is None:
        return BasicConstraints(UNLIMITED_PATH_LENGTH)
    return BasicConstraints(int(path_length))


_FIELDS = (
    ("subject_alt_names", rfc5280.id_ce_subjectAltName, subject_alt_names, ()),
    ("key_usage", rfc5280.id_ce_keyUsage, key_usage, ()),
    ("extended_key_usage", rfc5280.id_ce_extKeyUsage, extended_key_usage, ()),
    ("basic_constraints", rfc5280.id_ce_basicConstraints, basic_constraints, BasicConstraints(-1)),
)


def read_extensions(der: bytes) -> dict:
    """
    Detail fields for the extensions of a DER certificate.

    Each extension is decoded on its own; an absent or undecodable one gets
    its empty value.
    """
    try:
        raw = raw_extensions(der)
    except PyAsn1Error:
        logger.debug("Unable to decode certificate extensions", exc_info=True)
        raw = {}
    fields = {}
    for field, oid, reader, empty in _FIELDS:
        value = raw.get(str(oid))
        fields[field] = empty
        if value is None:
            continue
        try:
            fields[field] = reader(value)
        except (PyAsn1Error, ValueError):
            logger.debug("Unreadable extension %s", oid, exc_info=True)
    return fields
