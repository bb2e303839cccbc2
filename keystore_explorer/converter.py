"""Conversion of opened keystores into PKCS#12."""
import logging
from typing import Optional

from . import pkcs12
from .errors import ConversionError
from .models import (
    KeyEntry,
    KeystoreFormat,
    KeystoreHandle,
    SecretKeyEntry,
    TrustedCertificateEntry,
    UnlockedKey,
)

logger = logging.getLogger(__name__)


def _convert_key_entry(entry: KeyEntry, password: Optional[str]) -> KeyEntry:
    if entry.key is None:
        raise ConversionError(f"Key entry '{entry.alias}' has no private key")
    try:
        private_key = entry.key.unlock(password)
    except Exception as e:
        raise ConversionError(f"Unable to recover the private key of '{entry.alias}'") from e
    if private_key is None:
        raise ConversionError(f"Key entry '{entry.alias}' has no private key")

    chain = entry.certificate_chain
    if not chain and entry.certificate is not None:
        chain = (entry.certificate,)
    if not chain:
        raise ConversionError(f"Key entry '{entry.alias}' has no certificate chain")
    return KeyEntry(
        alias=entry.alias,
        certificate_chain=tuple(chain),
        certificate=chain[0],
        key=UnlockedKey(private_key),
    )


def convert_to_pkcs12(source: KeystoreHandle, keystore_password: Optional[str] = None,
                      key_password: Optional[str] = None) -> KeystoreHandle:
    """
    Copy key and trusted certificate entries into a new PKCS#12 handle.

    Keys are unlocked with ``key_password``, or with ``keystore_password``
    when no key password is given. Secret keys have no PKCS#12 counterpart
    and are left out. The source handle is never modified.

    Raises:
        ConversionError: A key cannot be recovered or lacks a certificate
            chain; nothing is returned in that case
    """
    password = key_password or keystore_password or None
    entries = []
    try:
        for entry in source:
            if isinstance(entry, KeyEntry):
                entries.append(_convert_key_entry(entry, password))
            elif isinstance(entry, TrustedCertificateEntry):
                entries.append(TrustedCertificateEntry(alias=entry.alias, certificate=entry.certificate))
            elif isinstance(entry, SecretKeyEntry):
                logger.debug("Secret key '%s' is not carried over to PKCS12", entry.alias)
        return KeystoreHandle(KeystoreFormat.PKCS12, entries)
    except ConversionError:
        logger.debug("Conversion to PKCS12 failed", exc_info=True)
        raise
    except Exception as e:
        logger.debug("Conversion to PKCS12 failed", exc_info=True)
        raise ConversionError("Unable to convert keystore to PKCS12") from e


def write_pkcs12(handle: KeystoreHandle, keystore_password: Optional[str] = None) -> bytes:
    """Serialize a PKCS#12 handle, protected by the source keystore password."""
    try:
        return pkcs12.dumps(handle, keystore_password or None)
    except Exception as e:
        logger.debug("Writing PKCS12 failed", exc_info=True)
        raise ConversionError("Unable to write PKCS12 keystore") from e
