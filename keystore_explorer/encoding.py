"""Hex rendering and digest helpers."""
from cryptography.hazmat.primitives import hashes

FINGERPRINT_ALGORITHMS = {
    "MD5": hashes.MD5,
    "SHA-1": hashes.SHA1,
    "SHA-256": hashes.SHA256,
}


def to_hex(data: bytes) -> str:
    return bytes(data).hex().upper()


def to_colon_hex(data: bytes) -> str:
    """keytool-style rendering: uppercase hex pairs joined by colons."""
    return ":".join(f"{b:02X}" for b in bytes(data))


def digest(data: bytes, algorithm: str) -> bytes:
    """Hash ``data`` with one of the names in :data:`FINGERPRINT_ALGORITHMS`."""
    try:
        algorithm_cls = FINGERPRINT_ALGORITHMS[algorithm]
    except KeyError:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}") from None
    h = hashes.Hash(algorithm_cls())
    h.update(bytes(data))
    return h.finalize()


def fingerprint(data: bytes, algorithm: str) -> str:
    return to_colon_hex(digest(data, algorithm))


def serial_to_hex(serial: int) -> str:
    """Uppercase hex without zero padding, as BigInteger.toString(16) renders it."""
    if serial < 0:
        return "-" + format(-serial, "X")
    return format(serial, "X")
