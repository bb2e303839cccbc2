import pytest
from jks.util import DecryptionFailureException

from conftest import STORE_PASSWORD, der
from keystore_explorer.converter import convert_to_pkcs12, write_pkcs12
from keystore_explorer.errors import ConversionError, Pkcs12Error
from keystore_explorer.keystore import list_entries, load_keystore
from keystore_explorer.models import (
    KeyEntry,
    KeystoreFormat,
    KeystoreHandle,
    SecretKeyEntry,
    TrustedCertificateEntry,
    UnlockedKey,
)


def test_convert_preserves_entries(jks_bytes, ca_cert, leaf_cert):
    source = load_keystore(jks_bytes, "store.jks", STORE_PASSWORD)
    converted = convert_to_pkcs12(source, STORE_PASSWORD)

    assert converted.format is KeystoreFormat.PKCS12
    assert converted.aliases() == source.aliases()
    assert converted.get("server").certificate_chain == (der(leaf_cert), der(ca_cert))
    assert converted.get("root").certificate == der(ca_cert)


def test_written_pkcs12_reloads(jks_bytes, leaf_key):
    source = load_keystore(jks_bytes, "store.jks", STORE_PASSWORD)
    data = write_pkcs12(convert_to_pkcs12(source, STORE_PASSWORD), STORE_PASSWORD)

    reloaded = load_keystore(data, "store.p12", STORE_PASSWORD)
    assert [(r.alias, r.entry_kind, r.certificate) for r in list_entries(reloaded)] == [
        (r.alias, r.entry_kind, r.certificate) for r in list_entries(source)
    ]
    key = reloaded.get("server").key.unlock(STORE_PASSWORD)
    assert key.private_numbers() == leaf_key.private_numbers()


def test_distinct_key_password(make_jks, leaf_key):
    source = load_keystore(make_jks(key_password="keypass"), "store.jks", STORE_PASSWORD)

    with pytest.raises(ConversionError):
        convert_to_pkcs12(source, STORE_PASSWORD)

    converted = convert_to_pkcs12(source, STORE_PASSWORD, "keypass")
    assert converted.get("server").key.unlock(None).private_numbers() == leaf_key.private_numbers()


def test_conversion_leaves_source_key_locked(make_jks):
    source = load_keystore(make_jks(key_password="keypass"), "store.jks", STORE_PASSWORD)
    convert_to_pkcs12(source, STORE_PASSWORD, "keypass")

    with pytest.raises(DecryptionFailureException):
        source.get("server").key.unlock(STORE_PASSWORD)


def test_empty_key_password_falls_back_to_store_password(jks_bytes):
    source = load_keystore(jks_bytes, "store.jks", STORE_PASSWORD)
    assert len(convert_to_pkcs12(source, STORE_PASSWORD, "")) == 2


def test_key_entry_without_chain_fails(make_jks):
    source = load_keystore(make_jks(chain=False), "store.jks", STORE_PASSWORD)

    with pytest.raises(ConversionError, match="no certificate chain"):
        convert_to_pkcs12(source, STORE_PASSWORD)


def test_single_certificate_becomes_chain(ca_cert, leaf_cert, leaf_key):
    source = KeystoreHandle(KeystoreFormat.JKS, [
        KeyEntry(alias="leaf", certificate=der(leaf_cert), key=UnlockedKey(leaf_key)),
    ])
    converted = convert_to_pkcs12(source)
    assert converted.get("leaf").certificate_chain == (der(leaf_cert),)


def test_key_entry_without_key_fails(leaf_cert):
    source = KeystoreHandle(KeystoreFormat.JKS, [KeyEntry(alias="orphan", certificate_chain=(der(leaf_cert),))])
    with pytest.raises(ConversionError, match="no private key"):
        convert_to_pkcs12(source)


def test_secret_keys_are_skipped(ca_cert):
    source = KeystoreHandle(KeystoreFormat.JCEKS, [
        SecretKeyEntry(alias="aes", algorithm="AES"),
        TrustedCertificateEntry(alias="root", certificate=der(ca_cert)),
    ])
    assert convert_to_pkcs12(source).aliases() == ["root"]


def test_source_is_not_modified(jks_bytes):
    source = load_keystore(jks_bytes, "store.jks", STORE_PASSWORD)
    before = source.entries
    convert_to_pkcs12(source, STORE_PASSWORD)
    assert source.entries == before


def test_write_failure_is_wrapped(leaf_key):
    handle = KeystoreHandle(KeystoreFormat.PKCS12, [KeyEntry(alias="bare", key=UnlockedKey(leaf_key))])
    with pytest.raises(ConversionError) as excinfo:
        write_pkcs12(handle, STORE_PASSWORD)
    assert isinstance(excinfo.value.__cause__, Pkcs12Error)
