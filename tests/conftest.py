import datetime
import ipaddress

import jks
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

STORE_PASSWORD = "changeit"

NOT_BEFORE = datetime.datetime(2024, 1, 15, 8, 30, tzinfo=datetime.timezone.utc)
NOT_AFTER = datetime.datetime(2034, 1, 15, 8, 30, tzinfo=datetime.timezone.utc)


def _name(common_name):
    return x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Org"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])


def der(cert):
    return cert.public_bytes(serialization.Encoding.DER)


def pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM)


def pkcs8(key):
    return key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def ca_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ca_cert(ca_key):
    name = _name("Example Root CA")
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ca_key.public_key())
        .serial_number(0x1001)
        .not_valid_before(NOT_BEFORE)
        .not_valid_after(NOT_AFTER)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=False,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def leaf_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def leaf_cert(ca_key, ca_cert, leaf_key):
    return (
        x509.CertificateBuilder()
        .subject_name(_name("server.example.com"))
        .issuer_name(ca_cert.subject)
        .public_key(leaf_key.public_key())
        .serial_number(0xABCDEF)
        .not_valid_before(NOT_BEFORE)
        .not_valid_after(NOT_AFTER)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName("server.example.com"),
                x509.IPAddress(ipaddress.ip_address("10.0.0.1")),
            ]),
            critical=False,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def empty_subject_cert(ca_key):
    """A self-issued certificate with an empty subject and no extensions."""
    return (
        x509.CertificateBuilder()
        .subject_name(x509.Name([]))
        .issuer_name(_name("Example Root CA"))
        .public_key(ca_key.public_key())
        .serial_number(7)
        .not_valid_before(NOT_BEFORE)
        .not_valid_after(NOT_AFTER)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture
def make_jks(ca_cert, leaf_cert, leaf_key):
    """Build JKS bytes with a ``server`` key entry and a ``root`` trusted entry."""

    def build(store_password=STORE_PASSWORD, key_password=None, chain=True, trusted=True):
        certs = [der(leaf_cert), der(ca_cert)] if chain else []
        key_entry = jks.PrivateKeyEntry.new("server", certs, pkcs8(leaf_key))
        if key_password is not None:
            key_entry.encrypt(key_password)
        entries = [key_entry]
        if trusted:
            entries.append(jks.TrustedCertEntry.new("root", der(ca_cert)))
        return jks.KeyStore.new("jks", entries).saves(store_password)

    return build


@pytest.fixture
def jks_bytes(make_jks):
    return make_jks()
