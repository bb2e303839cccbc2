import hashlib
import ipaddress

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID, NameOID

from conftest import NOT_AFTER, NOT_BEFORE, der
from keystore_explorer import extensions
from keystore_explorer.detail import certificate_detail
from keystore_explorer.errors import CertificateLoadError
from keystore_explorer.models import UNLIMITED_PATH_LENGTH, BasicConstraints


def _colon_hex(data):
    return ":".join(f"{b:02X}" for b in data)


def test_leaf_detail(leaf_cert):
    detail = certificate_detail(der(leaf_cert))

    assert detail.subject == "CN=server.example.com,O=Example Org"
    assert detail.issuer == "CN=Example Root CA,O=Example Org"
    assert detail.subject_alt_names == ("server.example.com", "10.0.0.1")
    assert detail.key_usage == ("digitalSignature", "keyEncipherment")
    assert detail.extended_key_usage == ("1.3.6.1.5.5.7.3.1", "1.3.6.1.5.5.7.3.2")
    assert detail.basic_constraints == BasicConstraints(-1)
    assert not detail.basic_constraints.is_ca


def test_ca_detail(ca_cert):
    detail = certificate_detail(der(ca_cert))

    assert detail.subject_alt_names == ()
    assert detail.key_usage == ("keyCertSign", "cRLSign")
    assert detail.extended_key_usage == ()
    assert detail.basic_constraints.path_length == UNLIMITED_PATH_LENGTH
    assert str(detail.basic_constraints) == "CA, path length = unlimited"


def test_missing_extensions_are_empty(empty_subject_cert):
    detail = certificate_detail(der(empty_subject_cert))

    assert detail.subject == ""
    assert detail.subject_alt_names == ()
    assert detail.key_usage == ()
    assert detail.basic_constraints.path_length == -1


def test_fingerprints(leaf_cert):
    data = der(leaf_cert)
    detail = certificate_detail(data)

    assert detail.fingerprint_md5 == _colon_hex(hashlib.md5(data).digest())
    assert detail.fingerprint_sha1 == _colon_hex(hashlib.sha1(data).digest())
    assert detail.fingerprint_sha256 == _colon_hex(hashlib.sha256(data).digest())


def test_basic_constraints_rendering():
    assert str(BasicConstraints(-1)) == "not a CA"
    assert str(BasicConstraints(2)) == "CA, path length = 2"
    assert BasicConstraints(0).is_ca


def test_malformed_der_raises():
    with pytest.raises(CertificateLoadError):
        certificate_detail(b"\x30\x03\x02\x01")


ODD_DIRECTORY = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "odd")])


def _cert_with(ca_key, *extension_list):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "odd.example")])
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ca_key.public_key())
        .serial_number(42)
        .not_valid_before(NOT_BEFORE)
        .not_valid_after(NOT_AFTER)
    )
    for extension in extension_list:
        builder = builder.add_extension(extension, critical=False)
    return builder.sign(ca_key, hashes.SHA256())


@pytest.fixture(scope="module")
def encipher_only_cert(ca_key):
    # digitalSignature + encipherOnly without keyAgreement
    return _cert_with(
        ca_key,
        x509.UnrecognizedExtension(ExtensionOID.KEY_USAGE, b"\x03\x02\x00\x81"),
        x509.SubjectAlternativeName([
            x509.DNSName("odd.example"),
            x509.IPAddress(ipaddress.ip_address("10.0.0.2")),
            x509.DirectoryName(ODD_DIRECTORY),
        ]),
        x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
        x509.BasicConstraints(ca=True, path_length=0),
    )


def test_rejected_key_usage_keeps_other_extensions(encipher_only_cert):
    detail = certificate_detail(der(encipher_only_cert))

    assert detail.key_usage == ("digitalSignature", "encipherOnly")
    assert detail.subject_alt_names == ("odd.example", "10.0.0.2", ODD_DIRECTORY.rfc4514_string())
    assert detail.extended_key_usage == ("1.3.6.1.5.5.7.3.1",)
    assert detail.basic_constraints == BasicConstraints(0)
    assert str(detail.basic_constraints) == "CA, path length = 0"


def test_read_extensions_matches_cryptography(leaf_cert, ca_cert):
    for cert in (leaf_cert, ca_cert):
        detail = certificate_detail(der(cert))
        assert extensions.read_extensions(der(cert)) == {
            "subject_alt_names": detail.subject_alt_names,
            "key_usage": detail.key_usage,
            "extended_key_usage": detail.extended_key_usage,
            "basic_constraints": detail.basic_constraints,
        }


def test_read_extensions_drops_only_the_broken_one(ca_key):
    cert = _cert_with(
        ca_key,
        # truncated GeneralNames
        x509.UnrecognizedExtension(ExtensionOID.SUBJECT_ALTERNATIVE_NAME, b"\x30\x05\x82\x03ab"),
        x509.BasicConstraints(ca=True, path_length=None),
    )

    fields = extensions.read_extensions(der(cert))
    assert fields["subject_alt_names"] == ()
    assert fields["key_usage"] == ()
    assert fields["basic_constraints"].path_length == UNLIMITED_PATH_LENGTH
