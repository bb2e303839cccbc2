"""
Records and keystore entry types shared by the loader, parser and converter.
"""
import abc
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple, Union

DISPLAY_DATE_FORMAT = "%Y-%m-%d %H:%M %Z"

# Path length reported for a CA certificate without a pathLenConstraint
UNLIMITED_PATH_LENGTH = 2**31 - 1

KEY_USAGE_NAMES = (
    "digitalSignature",
    "nonRepudiation",
    "keyEncipherment",
    "dataEncipherment",
    "keyAgreement",
    "keyCertSign",
    "cRLSign",
    "encipherOnly",
    "decipherOnly",
)


class EntryKind(enum.Enum):
    PRIVATE_KEY = "Private Key"
    TRUSTED_CERTIFICATE = "Trusted Certificate"
    CERTIFICATE = "Certificate"
    UNKNOWN = "Unknown"

    def __str__(self):
        return self.value


class KeystoreFormat(enum.Enum):
    JKS = "JKS"
    JCEKS = "JCEKS"
    PKCS12 = "PKCS12"

    def __str__(self):
        return self.value


class ExportFormat(enum.Enum):
    PEM = "PEM"
    DER = "DER"


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime(DISPLAY_DATE_FORMAT) if value is not None else ""


@dataclass(frozen=True)
class CertificateRecord:
    """One table row describing a certificate-bearing entry."""

    alias: str
    entry_kind: EntryKind
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    signature_algorithm: str = ""
    serial_number: str = ""
    certificate: Optional[bytes] = field(default=None, repr=False, compare=False)

    @property
    def valid_from(self) -> str:
        return _format_time(self.not_before)

    @property
    def valid_until(self) -> str:
        return _format_time(self.not_after)

    def as_row(self) -> Dict[str, str]:
        return {
            "Alias": self.alias,
            "Entry Type": str(self.entry_kind),
            "Valid From": self.valid_from,
            "Valid Until": self.valid_until,
            "Signature Algorithm": self.signature_algorithm,
            "Serial Number": self.serial_number,
        }


@dataclass(frozen=True)
class BasicConstraints:
    """CA flag and path length folded into one integer.

    ``-1`` means not a CA; :data:`UNLIMITED_PATH_LENGTH` means a CA without a
    path length limit.
    """

    path_length: int = -1

    @property
    def is_ca(self) -> bool:
        return self.path_length >= 0

    def __str__(self):
        if not self.is_ca:
            return "not a CA"
        if self.path_length == UNLIMITED_PATH_LENGTH:
            return "CA, path length = unlimited"
        return f"CA, path length = {self.path_length}"


@dataclass(frozen=True)
class CertificateDetail:
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    subject_alt_names: Tuple[str, ...] = ()
    key_usage: Tuple[str, ...] = ()
    extended_key_usage: Tuple[str, ...] = ()
    basic_constraints: BasicConstraints = BasicConstraints()
    fingerprint_md5: str = ""
    fingerprint_sha1: str = ""
    fingerprint_sha256: str = ""


class ProtectedKey(abc.ABC):
    """Private key material that is decrypted only when asked for."""

    @abc.abstractmethod
    def unlock(self, password: Optional[str]):
        """Return the ``cryptography`` private key, decrypting with ``password``.

        Raises whatever the underlying decoder raises on a wrong password or
        malformed key; callers wrap it in their own error type.
        """


class UnlockedKey(ProtectedKey):
    """A private key that is already decrypted; the password is ignored."""

    def __init__(self, private_key):
        self._private_key = private_key

    def unlock(self, password=None):
        return self._private_key


@dataclass(frozen=True)
class KeyEntry:
    """A private key with its certificate chain, leaf first."""

    alias: str
    certificate_chain: Tuple[bytes, ...] = field(default=(), repr=False)
    certificate: Optional[bytes] = field(default=None, repr=False)
    key: Optional[ProtectedKey] = field(default=None, repr=False, compare=False)

    kind = EntryKind.PRIVATE_KEY

    @property
    def leaf(self) -> Optional[bytes]:
        if self.certificate_chain:
            return self.certificate_chain[0]
        return self.certificate


@dataclass(frozen=True)
class TrustedCertificateEntry:
    alias: str
    certificate: bytes = field(repr=False)

    kind = EntryKind.TRUSTED_CERTIFICATE

    @property
    def leaf(self) -> bytes:
        return self.certificate


@dataclass(frozen=True)
class SecretKeyEntry:
    """A JCEKS secret key; listed but never converted."""

    alias: str
    algorithm: Optional[str] = None

    kind = EntryKind.UNKNOWN

    @property
    def leaf(self) -> None:
        return None


KeystoreEntry = Union[KeyEntry, TrustedCertificateEntry, SecretKeyEntry]


class KeystoreHandle:
    """An opened keystore held in memory.

    Entries are kept in the order the container exposes them. The handle
    never keeps the password it was opened with.
    """

    def __init__(self, keystore_format: KeystoreFormat, entries=None):
        self.format = keystore_format
        self._entries: Dict[str, KeystoreEntry] = {}
        for entry in entries or ():
            if entry.alias in self._entries:
                raise ValueError(f"Duplicate alias '{entry.alias}'")
            self._entries[entry.alias] = entry

    @property
    def entries(self) -> Dict[str, KeystoreEntry]:
        return dict(self._entries)

    def aliases(self) -> List[str]:
        return list(self._entries)

    def get(self, alias: str) -> KeystoreEntry:
        try:
            return self._entries[alias]
        except KeyError:
            raise KeyError(f"No entry with alias '{alias}'") from None

    def __contains__(self, alias):
        return alias in self._entries

    def __iter__(self) -> Iterator[KeystoreEntry]:
        return iter(list(self._entries.values()))

    def __len__(self):
        return len(self._entries)

    def close(self):
        """Drop every entry, and with them any decrypted key material."""
        self._entries.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return f"KeystoreHandle(format={self.format.value}, aliases={self.aliases()!r})"
