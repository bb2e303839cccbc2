"""
Keystore loading.

Each container format is handled by a :class:`KeystoreProvider`. Providers
are tried in :data:`PROVIDERS` order and the first one claiming the file name
loads it; when none does, the provider for the configured default format is
used.
"""
import abc
import hashlib
import logging
import os
from typing import List, Optional

import jks
from cryptography.hazmat.primitives import serialization
from jks.jks import SIGNATURE_WHITENING

from . import pkcs12
from .certificates import load_der_certificate, record_from_certificate
from .config import get_settings
from .errors import KeystoreLoadError
from .models import (
    CertificateRecord,
    KeyEntry,
    KeystoreFormat,
    KeystoreHandle,
    ProtectedKey,
    SecretKeyEntry,
    TrustedCertificateEntry,
)

logger = logging.getLogger(__name__)

_JKS_DIGEST_SIZE = hashlib.sha1().digest_size


class JksProtectedKey(ProtectedKey):
    """
    An encrypted pyjks private key.

    Every unlock decrypts a fresh entry, so the loaded entry never holds the
    plain key and each call checks its password.
    """

    def __init__(self, entry):
        self._alias = entry.alias
        self._store_type = entry.store_type
        self._encrypted = entry._encrypted

    def unlock(self, password):
        entry = jks.PrivateKeyEntry(alias=self._alias, store_type=self._store_type, encrypted=self._encrypted)
        entry.decrypt(password or "")
        return serialization.load_der_private_key(entry.pkey_pkcs8, password=None)


class KeystoreProvider(abc.ABC):
    """Loads one family of keystore containers."""

    format: KeystoreFormat
    extensions = ()

    def supports(self, filename: str) -> bool:
        return os.path.splitext(filename or "")[1].lower() in self.extensions

    @abc.abstractmethod
    def load(self, data: bytes, password: Optional[str]) -> KeystoreHandle:
        """Decode ``data``; a ``None`` password skips the integrity check."""


class JksProvider(KeystoreProvider):
    format = KeystoreFormat.JKS
    extensions = (".jks", ".ks")

    @staticmethod
    def _unsigned(data):
        # pyjks always checks the store digest, so re-sign it with the empty
        # password to load without one
        body = data[:-_JKS_DIGEST_SIZE]
        return body + hashlib.sha1("".encode("utf-16be") + SIGNATURE_WHITENING + body).digest()

    def load(self, data, password):
        if password is None:
            store = jks.KeyStore.loads(self._unsigned(data), "", try_decrypt_keys=False)
        else:
            store = jks.KeyStore.loads(data, password, try_decrypt_keys=False)

        entries = []
        for alias, entry in store.entries.items():
            if isinstance(entry, jks.PrivateKeyEntry):
                chain = tuple(bytes(der) for _cert_type, der in entry.cert_chain)
                entries.append(KeyEntry(
                    alias=alias,
                    certificate_chain=chain,
                    certificate=chain[0] if chain else None,
                    key=JksProtectedKey(entry),
                ))
            elif isinstance(entry, jks.TrustedCertEntry):
                entries.append(TrustedCertificateEntry(alias=alias, certificate=bytes(entry.cert)))
            elif isinstance(entry, jks.SecretKeyEntry):
                algorithm = entry.algorithm if entry.is_decrypted() else None
                entries.append(SecretKeyEntry(alias=alias, algorithm=algorithm))
            else:
                logger.debug("Skipping unsupported entry '%s' (%s)", alias, type(entry).__name__)

        store_format = KeystoreFormat.JCEKS if store.store_type == "jceks" else KeystoreFormat.JKS
        return KeystoreHandle(store_format, entries)


class Pkcs12Provider(KeystoreProvider):
    format = KeystoreFormat.PKCS12
    extensions = (".p12", ".pfx")

    def load(self, data, password):
        return pkcs12.loads(data, password)


PROVIDERS = (JksProvider(), Pkcs12Provider())

KEYSTORE_EXTENSIONS = tuple(ext for provider in PROVIDERS for ext in provider.extensions)


def select_provider(filename: str) -> KeystoreProvider:
    for provider in PROVIDERS:
        if provider.supports(filename):
            return provider
    default = KeystoreFormat(get_settings().default_keystore_format)
    return next(p for p in PROVIDERS if p.format == default)


def load_keystore(data: bytes, filename: str, password: Optional[str] = None) -> KeystoreHandle:
    """
    Open a keystore held in memory.

    Args:
        data: Raw keystore bytes
        filename: Original file name, used only to pick the container format
        password: Store password; ``""`` and ``None`` both mean "no password"
            and skip the integrity check

    Returns:
        KeystoreHandle with entries in container order

    Raises:
        KeystoreLoadError: Wrong password, corrupt data or unsupported format
    """
    if password == "":
        password = None
    provider = select_provider(filename)
    logger.debug("Loading %s as %s", filename, provider.format)
    try:
        return provider.load(bytes(data), password)
    except Exception as e:
        logger.debug("Keystore load failed for %s", filename, exc_info=True)
        raise KeystoreLoadError(f"Unable to load keystore: {os.path.basename(filename or '')}") from e


def _record(entry) -> CertificateRecord:
    der = entry.leaf
    if der is None:
        return CertificateRecord(alias=entry.alias, entry_kind=entry.kind)
    return record_from_certificate(load_der_certificate(der), entry.alias, entry.kind)


def list_entries(handle: KeystoreHandle) -> List[CertificateRecord]:
    """One record per entry, in container order.

    Entries without a certificate, such as secret keys, get blank validity,
    algorithm and serial fields.
    """
    return [_record(entry) for entry in handle]
