"""PKCS#12 keystore reader and writer.

``cryptography`` only reads and writes PKCS#12 files holding a single key and
cannot tell a trusted certificate entry from a chain certificate, so the
container itself is handled here with pyasn1, the way pyjks handles JKS.
The ASN.1 structures come from ``pyasn1_modules`` (RFC 7292, RFC 5652 and
RFC 8018). Ciphers, HMAC and PKCS#8 key protection come from
``cryptography``; the PKCS#12 key derivation function comes from
``jks.rfc7292``.

Reading supports MAC-protected files (HMAC-SHA1/224/256/384/512), unencrypted
safes and safes encrypted with PBES2/AES-CBC or
pbeWithSHAAnd3-KeyTripleDES-CBC. Files using any other protection algorithm
are handed to ``cryptography.hazmat.primitives.serialization.pkcs12``, which
supports a single key entry.

Writing produces one unencrypted SafeContents holding, in entry order, a
shrouded key bag plus certificate bags for each key entry and a certificate
bag carrying Java's trusted-certificate attribute for each trusted entry.
"""
import hashlib
import logging
import os

from cryptography import x509
from cryptography.hazmat.primitives import constant_time, hashes, hmac, padding, serialization
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.serialization import pkcs12 as crypto_pkcs12
from jks import rfc7292 as jks_rfc7292
from jks.util import BadPaddingException
from pyasn1.codec.ber import decoder
from pyasn1.codec.der import encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import char, univ
from pyasn1_modules import rfc2315, rfc4055, rfc5280, rfc5652, rfc7292, rfc8018

from .certificates import subject_name
from .config import get_settings
from .encoding import digest
from .errors import Pkcs12Error, UnsupportedAlgorithmError
from .models import (
    KeyEntry,
    KeystoreFormat,
    KeystoreHandle,
    ProtectedKey,
    TrustedCertificateEntry,
    UnlockedKey,
)

logger = logging.getLogger(__name__)

PFX_VERSION = 3
MAC_SALT_SIZE = 16

X509_CERTIFICATE = rfc7292.x509Certificate["certId"]
KEY_BAGS = (rfc7292.id_keyBag, rfc7292.id_pkcs8ShroudedKeyBag)
# Oracle's marker for trusted certificate entries in Java PKCS12 keystores
JAVA_TRUSTED_KEY_USAGE = univ.ObjectIdentifier("2.16.840.1.113894.746875.1.1")

_MAC_DIGESTS = {
    str(rfc4055.id_sha1): hashes.SHA1,
    str(rfc4055.id_sha224): hashes.SHA224,
    str(rfc4055.id_sha256): hashes.SHA256,
    str(rfc4055.id_sha384): hashes.SHA384,
    str(rfc4055.id_sha512): hashes.SHA512,
}
_MAC_DIGEST_OIDS = {
    "sha1": rfc4055.id_sha1,
    "sha224": rfc4055.id_sha224,
    "sha256": rfc4055.id_sha256,
    "sha384": rfc4055.id_sha384,
    "sha512": rfc4055.id_sha512,
}
# hashlib constructors for jks.rfc7292.derive_key
_KDF_HASHES = {
    hashes.SHA1: hashlib.sha1,
    hashes.SHA224: hashlib.sha224,
    hashes.SHA256: hashlib.sha256,
    hashes.SHA384: hashlib.sha384,
    hashes.SHA512: hashlib.sha512,
}
_PRF_HASHES = {
    str(rfc8018.id_hmacWithSHA1): hashes.SHA1,
    str(rfc8018.id_hmacWithSHA224): hashes.SHA224,
    str(rfc8018.id_hmacWithSHA256): hashes.SHA256,
    str(rfc8018.id_hmacWithSHA384): hashes.SHA384,
    str(rfc8018.id_hmacWithSHA512): hashes.SHA512,
}
_AES_KEY_SIZES = {
    str(rfc8018.aes128_CBC_PAD): 16,
    str(rfc8018.aes192_CBC_PAD): 24,
    str(rfc8018.aes256_CBC_PAD): 32,
}


class Pkcs8Key(ProtectedKey):
    """A PKCS#8 key from a key bag, decrypted by ``cryptography`` on unlock."""

    def __init__(self, der, encrypted):
        self._der = bytes(der)
        self.encrypted = encrypted

    def unlock(self, password):
        if not self.encrypted:
            return serialization.load_der_private_key(self._der, password=None)
        return serialization.load_der_private_key(self._der, password=_password_bytes(password) or None)


class _Bag:
    __slots__ = ("bag_id", "value", "friendly_name", "local_key_id", "trusted", "cert")

    def __init__(self, bag_id, value, friendly_name=None, local_key_id=None, trusted=False):
        self.bag_id = bag_id
        self.value = value
        self.friendly_name = friendly_name
        self.local_key_id = local_key_id
        self.trusted = trusted
        self.cert = None

    @property
    def is_key(self):
        return self.bag_id in KEY_BAGS


def _password_bytes(password):
    return password.encode("utf-8") if password else b""


def _decode(data, spec):
    try:
        value, rest = decoder.decode(bytes(data), asn1Spec=spec)
    except PyAsn1Error as e:
        raise Pkcs12Error(f"Malformed {spec.__class__.__name__} structure: {e}") from e
    if rest:
        raise Pkcs12Error(f"Unexpected trailing data after {spec.__class__.__name__} structure")
    return value


def _octets(any_value):
    return _decode(any_value.asOctets(), univ.OctetString()).asOctets()


# ---------------------------------------------------------------------------
# integrity and decryption


def _compute_mac(digest_oid, password, salt, iterations, data):
    try:
        hash_cls = _MAC_DIGESTS[str(digest_oid)]
    except KeyError:
        raise UnsupportedAlgorithmError(f"Unsupported PKCS#12 MAC digest {digest_oid}") from None
    key = jks_rfc7292.derive_key(_KDF_HASHES[hash_cls], jks_rfc7292.PURPOSE_MAC_MATERIAL, password or "", salt,
                                 iterations, hash_cls.digest_size)
    mac = hmac.HMAC(bytes(key), hash_cls())
    mac.update(data)
    return mac.finalize()


def _verify_mac(mac_data, password, data):
    digest_info = mac_data['mac']
    expected = digest_info['digest'].asOctets()
    actual = _compute_mac(
        digest_info['digestAlgorithm']['algorithm'],
        password,
        mac_data['macSalt'].asOctets(),
        int(mac_data['iterations']),
        data,
    )
    if not constant_time.bytes_eq(expected, actual):
        raise Pkcs12Error("MAC verification failed; incorrect keystore password?")


def _pbes2_decrypt(params_der, ciphertext, password):
    params = _decode(params_der, rfc8018.PBES2_params())
    kdf = params['keyDerivationFunc']
    scheme = params['encryptionScheme']
    if kdf['algorithm'] != rfc8018.id_PBKDF2:
        raise UnsupportedAlgorithmError(f"Unsupported PBES2 key derivation {kdf['algorithm']}")
    key_size = _AES_KEY_SIZES.get(str(scheme['algorithm']))
    if key_size is None:
        raise UnsupportedAlgorithmError(f"Unsupported PBES2 cipher {scheme['algorithm']}")

    kdf_params = _decode(kdf['parameters'].asOctets(), rfc8018.PBKDF2_params())
    salt = kdf_params['salt']
    if salt.getName() != 'specified':
        raise UnsupportedAlgorithmError("Unsupported PBKDF2 salt source")
    # prf defaults to hmacWithSHA1 when absent
    prf_oid = kdf_params['prf']['algorithm']
    prf = _PRF_HASHES.get(str(prf_oid))
    if prf is None:
        raise UnsupportedAlgorithmError(f"Unsupported PBKDF2 PRF {prf_oid}")
    iv = _decode(scheme['parameters'].asOctets(), univ.OctetString()).asOctets()

    key = PBKDF2HMAC(
        algorithm=prf(),
        length=key_size,
        salt=salt['specified'].asOctets(),
        iterations=int(kdf_params['iterationCount']),
    ).derive(_password_bytes(password))
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    try:
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise Pkcs12Error("Failed to decrypt PKCS#12 contents; wrong password?") from e


def _pbe_sha1_3des_decrypt(params_der, ciphertext, password):
    params = _decode(params_der, rfc7292.Pkcs_12PbeParams())
    try:
        return jks_rfc7292.decrypt_PBEWithSHAAnd3KeyTripleDESCBC(
            ciphertext, password or "", params['salt'].asOctets(), int(params['iterations']))
    except BadPaddingException as e:
        raise Pkcs12Error("Failed to decrypt PKCS#12 contents; wrong password?") from e


def _decrypt(algorithm, ciphertext, password):
    oid = algorithm['algorithm']
    if oid not in (rfc8018.id_PBES2, rfc7292.pbeWithSHAAnd3_KeyTripleDES_CBC):
        raise UnsupportedAlgorithmError(f"Unsupported PKCS#12 encryption algorithm {oid}")
    if not algorithm['parameters'].isValue:
        raise Pkcs12Error(f"Missing parameters for PKCS#12 encryption algorithm {oid}")
    params_der = algorithm['parameters'].asOctets()
    if oid == rfc8018.id_PBES2:
        return _pbes2_decrypt(params_der, ciphertext, password)
    return _pbe_sha1_3des_decrypt(params_der, ciphertext, password)


# ---------------------------------------------------------------------------
# reading


def _read_attributes(bag):
    friendly_name = None
    local_key_id = None
    trusted = False
    attributes = bag['bagAttributes']
    if not attributes.isValue:
        return friendly_name, local_key_id, trusted
    for attribute in attributes:
        values = attribute['attrValues']
        if not len(values):
            continue
        raw = values[0].asOctets()
        attr_type = attribute['attrType']
        if attr_type == rfc7292.pkcs_9_at_friendlyName:
            friendly_name = str(_decode(raw, char.BMPString()))
        elif attr_type == rfc7292.pkcs_9_at_localKeyId:
            local_key_id = _decode(raw, univ.OctetString()).asOctets()
        elif attr_type == JAVA_TRUSTED_KEY_USAGE:
            trusted = True
    return friendly_name, local_key_id, trusted


def _iter_safe_contents(auth_safe, password):
    for content_info in auth_safe:
        content_type = content_info['contentType']
        if content_type == rfc5652.id_data:
            data = _octets(content_info['content'])
        elif content_type == rfc5652.id_encryptedData:
            encrypted = _decode(content_info['content'].asOctets(), rfc5652.EncryptedData())
            eci = encrypted['encryptedContentInfo']
            if not eci['encryptedContent'].isValue:
                continue
            data = _decrypt(eci['contentEncryptionAlgorithm'], eci['encryptedContent'].asOctets(), password)
        else:
            raise UnsupportedAlgorithmError(f"Unsupported PKCS#12 content type {content_type}")
        yield _decode(data, rfc7292.SafeContents())


def _iter_bags(safe_contents):
    for bag in safe_contents:
        if bag['bagId'] == rfc7292.id_safeContentsBag:
            yield from _iter_bags(_decode(bag['bagValue'].asOctets(), rfc7292.SafeContents()))
        else:
            yield bag


def _collect_bags(auth_safe_der, password):
    auth_safe = _decode(auth_safe_der, rfc7292.AuthenticatedSafe())
    collected = []
    for safe_contents in _iter_safe_contents(auth_safe, password):
        for bag in _iter_bags(safe_contents):
            bag_id = bag['bagId']
            friendly_name, local_key_id, trusted = _read_attributes(bag)
            if bag_id in KEY_BAGS:
                value = bag['bagValue'].asOctets()
            elif bag_id == rfc7292.id_certBag:
                cert_bag = _decode(bag['bagValue'].asOctets(), rfc7292.CertBag())
                if cert_bag['certId'] != X509_CERTIFICATE:
                    logger.debug("Skipping non-X.509 certificate bag %s", cert_bag['certId'])
                    continue
                value = _octets(cert_bag['certValue'])
            else:
                logger.debug("Skipping unsupported PKCS#12 bag %s", bag_id)
                continue
            collected.append(_Bag(bag_id, value, friendly_name, local_key_id, trusted))
    return collected


def _issuer_chain(leaf, pool):
    """Certificates from ``pool`` that complete the chain above ``leaf``, in order."""
    chain = []
    current = leaf
    while current.issuer != current.subject:
        issuer = next(
            (c for c in pool if c.subject == current.issuer and c is not leaf and c not in chain),
            None,
        )
        if issuer is None:
            break
        chain.append(issuer)
        current = issuer
    return chain


def _unique_alias(alias, taken):
    candidate = alias
    n = 2
    while candidate in taken:
        candidate = f"{alias} ({n})"
        n += 1
    taken.add(candidate)
    return candidate


def _build_entries(bags):
    cert_bags = [b for b in bags if b.bag_id == rfc7292.id_certBag]
    for b in cert_bags:
        try:
            b.cert = x509.load_der_x509_certificate(b.value)
        except ValueError as e:
            raise Pkcs12Error("Malformed certificate in PKCS#12 data") from e

    pool = [b.cert for b in cert_bags]
    key_chains = {}
    used = set()
    for index, bag in enumerate(bags):
        if not bag.is_key:
            continue
        leaf_bag = next(
            (c for c in cert_bags if bag.local_key_id is not None and c.local_key_id == bag.local_key_id),
            None,
        )
        if leaf_bag is None and bag.friendly_name:
            leaf_bag = next(
                (c for c in cert_bags if not c.trusted and c.friendly_name == bag.friendly_name),
                None,
            )
        if leaf_bag is None:
            key_chains[index] = (None, [])
            continue
        chain = [leaf_bag.cert] + _issuer_chain(leaf_bag.cert, pool)
        used.update(id(c) for c in chain)
        key_chains[index] = (leaf_bag, chain)

    # key entries sit where their key or leaf certificate first appears and
    # claim their aliases before trusted certificates do
    taken = set()
    placed = []
    for index, (leaf_bag, chain) in key_chains.items():
        bag = bags[index]
        position = min(index, bags.index(leaf_bag)) if leaf_bag is not None else index
        ders = tuple(c.public_bytes(serialization.Encoding.DER) for c in chain)
        alias = bag.friendly_name or (leaf_bag and subject_name(leaf_bag.cert)) or f"key{len(placed) + 1}"
        placed.append((position, KeyEntry(
            alias=_unique_alias(alias, taken),
            certificate_chain=ders,
            certificate=ders[0] if ders else None,
            key=Pkcs8Key(bag.value, encrypted=bag.bag_id == rfc7292.id_pkcs8ShroudedKeyBag),
        )))

    for index, bag in enumerate(bags):
        if bag.is_key:
            continue
        if not bag.trusted:
            if id(bag.cert) in used:
                continue
            if key_chains and bag.friendly_name is None and bag.local_key_id is None:
                logger.debug("Ignoring unlinked chain certificate %s", subject_name(bag.cert))
                continue
        alias = bag.friendly_name or subject_name(bag.cert) or f"cert{len(placed) + 1}"
        placed.append((index, TrustedCertificateEntry(alias=_unique_alias(alias, taken), certificate=bag.value)))

    placed.sort(key=lambda item: item[0])
    return [entry for _position, entry in placed]


def _load_with_cryptography(data, password):
    """Single-key fallback for files protected by algorithms the codec lacks."""
    try:
        p12 = crypto_pkcs12.load_pkcs12(data, _password_bytes(password) or None)
    except (ValueError, TypeError) as e:
        raise Pkcs12Error("Unable to decode PKCS#12 data; wrong password?") from e

    taken = set()
    entries = []
    extra = [c.certificate for c in p12.additional_certs]
    names = {id(c.certificate): c.friendly_name for c in p12.additional_certs}
    used = set()
    leaf = p12.cert.certificate if p12.cert is not None else None
    if p12.key is not None:
        chain = [leaf] + _issuer_chain(leaf, extra) if leaf is not None else []
        used.update(id(c) for c in chain)
        name = p12.cert.friendly_name if p12.cert is not None else None
        alias = name.decode("utf-8", "replace") if name else (subject_name(leaf) if leaf else "key1")
        ders = tuple(c.public_bytes(serialization.Encoding.DER) for c in chain)
        entries.append(KeyEntry(
            alias=_unique_alias(alias, taken),
            certificate_chain=ders,
            certificate=ders[0] if ders else None,
            key=UnlockedKey(p12.key),
        ))
    elif leaf is not None:
        extra.insert(0, leaf)
        names[id(leaf)] = p12.cert.friendly_name
    for cert in extra:
        if id(cert) in used:
            continue
        name = names.get(id(cert))
        alias = name.decode("utf-8", "replace") if name else subject_name(cert) or f"cert{len(entries) + 1}"
        entries.append(TrustedCertificateEntry(
            alias=_unique_alias(alias, taken),
            certificate=cert.public_bytes(serialization.Encoding.DER),
        ))
    return entries


def loads(data, password=None):
    """
    Decode a PKCS#12 keystore into a :class:`KeystoreHandle`.

    The MAC is verified unless ``password`` is ``None``. Key bags stay
    encrypted; :meth:`KeyEntry.key.unlock` decrypts them on demand.

    Raises:
        Pkcs12Error: Malformed data, failed MAC or failed decryption
    """
    pfx = _decode(data, rfc7292.PFX())
    if int(pfx['version']) != PFX_VERSION:
        raise Pkcs12Error(f"Unsupported PFX version {int(pfx['version'])}")
    auth_safe_info = pfx['authSafe']
    if auth_safe_info['contentType'] != rfc5652.id_data:
        raise Pkcs12Error("Only password integrity mode PKCS#12 files are supported")
    auth_safe_der = _octets(auth_safe_info['content'])

    try:
        if password is not None and pfx['macData'].isValue:
            _verify_mac(pfx['macData'], password, auth_safe_der)
        entries = _build_entries(_collect_bags(auth_safe_der, password))
    except UnsupportedAlgorithmError as e:
        logger.debug("Falling back to cryptography's PKCS#12 loader: %s", e)
        entries = _load_with_cryptography(bytes(data), password)
    return KeystoreHandle(KeystoreFormat.PKCS12, entries)


# ---------------------------------------------------------------------------
# writing


def _attribute(attr_type, value):
    attribute = rfc7292.PKCS12Attribute()
    attribute['attrType'] = attr_type
    values = attribute['attrValues']
    values.clear()
    values.append(encoder.encode(value))
    return attribute


def _safe_bag(bag_id, value_der, friendly_name=None, local_key_id=None, trusted=False):
    bag = rfc7292.SafeBag()
    bag['bagId'] = bag_id
    bag['bagValue'] = value_der
    attributes = []
    if friendly_name is not None:
        attributes.append(_attribute(rfc7292.pkcs_9_at_friendlyName, char.BMPString(friendly_name)))
    if local_key_id is not None:
        attributes.append(_attribute(rfc7292.pkcs_9_at_localKeyId, univ.OctetString(local_key_id)))
    if trusted:
        attributes.append(_attribute(JAVA_TRUSTED_KEY_USAGE, rfc5280.anyExtendedKeyUsage))
    if attributes:
        bag_attributes = bag['bagAttributes']
        bag_attributes.clear()
        for attribute in attributes:
            bag_attributes.append(attribute)
    return bag


def _cert_bag(der, **attributes):
    cert_bag = rfc7292.CertBag()
    cert_bag['certId'] = X509_CERTIFICATE
    cert_bag['certValue'] = encoder.encode(univ.OctetString(der))
    return _safe_bag(rfc7292.id_certBag, encoder.encode(cert_bag), **attributes)


def _key_bag(private_key, password, alias, local_key_id):
    if password:
        der = private_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(_password_bytes(password)),
        )
        bag_id = rfc7292.id_pkcs8ShroudedKeyBag
    else:
        der = private_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        bag_id = rfc7292.id_keyBag
    return _safe_bag(bag_id, der, friendly_name=alias, local_key_id=local_key_id)


def _data_content_info(payload):
    content_info = rfc5652.ContentInfo()
    content_info['contentType'] = rfc5652.id_data
    content_info['content'] = encoder.encode(univ.OctetString(payload))
    return content_info


def _mac_data(password, data, iterations, digest_name):
    digest_oid = _MAC_DIGEST_OIDS[digest_name]
    salt = os.urandom(MAC_SALT_SIZE)
    digest_info = rfc2315.DigestInfo()
    digest_info['digestAlgorithm']['algorithm'] = digest_oid
    digest_info['digestAlgorithm']['parameters'] = encoder.encode(univ.Null(''))
    digest_info['digest'] = _compute_mac(digest_oid, password, salt, iterations, data)
    mac_data = rfc7292.MacData()
    mac_data['mac'] = digest_info
    mac_data['macSalt'] = salt
    mac_data['iterations'] = iterations
    return mac_data


def dumps(handle, password=None, mac_iterations=None, mac_digest=None):
    """
    Encode a keystore handle as PKCS#12.

    Keys are unlocked with ``password`` and re-encrypted with it; without a
    password keys are stored unencrypted and no MAC is written. Secret key
    entries cannot be represented and are skipped.

    Raises:
        Pkcs12Error: If a key entry cannot be unlocked or has no certificate
    """
    settings = get_settings()
    mac_iterations = mac_iterations or settings.pkcs12_mac_iterations
    mac_digest = mac_digest or settings.pkcs12_mac_digest

    bags = rfc7292.SafeContents()
    bags.clear()
    written_chain_certs = set()
    local_key_ids = set()
    for entry in handle:
        if isinstance(entry, KeyEntry):
            chain = entry.certificate_chain or ((entry.certificate,) if entry.certificate else ())
            if not chain:
                raise Pkcs12Error(f"Key entry '{entry.alias}' has no certificate")
            try:
                private_key = entry.key.unlock(password)
            except Exception as e:
                raise Pkcs12Error(f"Unable to unlock key entry '{entry.alias}'") from e
            local_key_id = digest(chain[0], "SHA-1")
            while local_key_id in local_key_ids:
                local_key_id = digest(local_key_id + entry.alias.encode("utf-8"), "SHA-1")
            local_key_ids.add(local_key_id)

            bags.append(_key_bag(private_key, password, entry.alias, local_key_id))
            bags.append(_cert_bag(chain[0], friendly_name=entry.alias, local_key_id=local_key_id))
            for der in chain[1:]:
                if der not in written_chain_certs:
                    written_chain_certs.add(der)
                    bags.append(_cert_bag(der))
        elif isinstance(entry, TrustedCertificateEntry):
            bags.append(_cert_bag(entry.certificate, friendly_name=entry.alias, trusted=True))
        else:
            logger.debug("Skipping entry '%s' of kind %s", entry.alias, entry.kind)

    auth_safe = rfc7292.AuthenticatedSafe()
    auth_safe.clear()
    auth_safe.append(_data_content_info(encoder.encode(bags)))
    auth_safe_der = encoder.encode(auth_safe)

    pfx = rfc7292.PFX()
    pfx['version'] = PFX_VERSION
    pfx['authSafe'] = _data_content_info(auth_safe_der)
    if password:
        pfx['macData'] = _mac_data(password, auth_safe_der, mac_iterations, mac_digest)
    return encoder.encode(pfx)
