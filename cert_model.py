"""Structured view of X.509 certificates.

Decodes PEM blocks into immutable :class:`Certificate` records holding the
subject/issuer attribute maps, validity window, public key, the commonly
inspected extensions and the derived fingerprints and HPKP pin.

Self-signed detection here compares names only. No signature is checked.
"""

from __future__ import annotations

import base64
import datetime
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from asn1crypto import core as asn1_core
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from cert_errors import MalformedCertificate, NoCertificatesParsedError
from cert_lib import extract_pem_blocks, pem_to_der

__all__ = [
    "Certificate",
    "PublicKeyInfo",
    "BasicConstraints",
    "CA_ISSUERS_OID",
    "parse_certificate",
    "parse_chain",
    "name_to_attributes",
    "canonical_name",
    "format_name",
    "fingerprint",
    "spki_pin",
    "extract_ca_issuers_url",
]

logger = logging.getLogger(__name__)

CA_ISSUERS_OID = "1.3.6.1.5.5.7.48.2"

_CRT_URL_RE = re.compile(r"https?://[\x21-\x7e]+\.crt")

SHORT_NAMES = {
    NameOID.COUNTRY_NAME: "C",
    NameOID.STATE_OR_PROVINCE_NAME: "ST",
    NameOID.LOCALITY_NAME: "L",
    NameOID.ORGANIZATION_NAME: "O",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    NameOID.COMMON_NAME: "CN",
    NameOID.EMAIL_ADDRESS: "E",
    NameOID.SERIAL_NUMBER: "SERIALNUMBER",
    NameOID.STREET_ADDRESS: "STREET",
    NameOID.DOMAIN_COMPONENT: "DC",
    NameOID.USER_ID: "UID",
}

# Registered attributes without a short form keep their long name
LONG_NAMES = {
    NameOID.GIVEN_NAME: "givenName",
    NameOID.SURNAME: "surname",
    NameOID.TITLE: "title",
    NameOID.INITIALS: "initials",
    NameOID.GENERATION_QUALIFIER: "generationQualifier",
    NameOID.PSEUDONYM: "pseudonym",
    NameOID.DN_QUALIFIER: "dnQualifier",
    NameOID.BUSINESS_CATEGORY: "businessCategory",
    NameOID.POSTAL_CODE: "postalCode",
    NameOID.JURISDICTION_COUNTRY_NAME: "jurisdictionC",
    NameOID.JURISDICTION_STATE_OR_PROVINCE_NAME: "jurisdictionST",
    NameOID.JURISDICTION_LOCALITY_NAME: "jurisdictionL",
    x509.ObjectIdentifier("2.5.4.97"): "organizationIdentifier",
}

KEY_USAGE_NAMES = {
    "digital_signature": "Digital Signature",
    "non_repudiation": "Non Repudiation",
    "key_encipherment": "Key Encipherment",
    "data_encipherment": "Data Encipherment",
    "key_agreement": "Key Agreement",
    "key_cert_sign": "Certificate Sign",
    "crl_sign": "CRL Sign",
    "encipher_only": "Encipher Only",
    "decipher_only": "Decipher Only",
}

_ASN1_SAN_PREFIXES = {
    "dns_name": "DNS",
    "ip_address": "IP",
    "uniform_resource_identifier": "URI",
    "rfc822_name": "Email",
}

EXTENDED_KEY_USAGE_NAMES = {
    ExtendedKeyUsageOID.SERVER_AUTH: "TLS Web Server Authentication",
    ExtendedKeyUsageOID.CLIENT_AUTH: "TLS Web Client Authentication",
    ExtendedKeyUsageOID.CODE_SIGNING: "Code Signing",
    ExtendedKeyUsageOID.EMAIL_PROTECTION: "Email Protection",
    ExtendedKeyUsageOID.TIME_STAMPING: "Time Stamping",
    ExtendedKeyUsageOID.OCSP_SIGNING: "OCSP Signing",
    ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE: "Any Extended Key Usage",
}

_HASHES = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
}


@dataclass(frozen=True)
class PublicKeyInfo:
    algorithm: str
    key_size: Optional[int] = None
    modulus: Optional[int] = None
    exponent: Optional[int] = None
    curve: Optional[str] = None

    @property
    def modulus_hex(self) -> Optional[str]:
        """RSA modulus as upper-case hex, ``None`` for other algorithms."""
        if self.modulus is None:
            return None
        return format(self.modulus, "X")


@dataclass(frozen=True)
class BasicConstraints:
    is_ca: bool
    path_length: Optional[int] = None


@dataclass(frozen=True)
class Certificate:
    """A decoded certificate. Built by :func:`parse_certificate`, never mutated."""

    serial_number: str
    subject: Dict[str, str]
    issuer: Dict[str, str]
    valid_from: datetime.datetime
    valid_to: datetime.datetime
    public_key: PublicKeyInfo
    subject_alt_names: Tuple[str, ...]
    key_usage: Tuple[str, ...]
    extended_key_usage: Tuple[str, ...]
    basic_constraints: Optional[BasicConstraints]
    authority_info_access_url: Optional[str]
    raw_der: bytes
    raw_pem: str
    spki_der: bytes
    fingerprint_sha1: str
    fingerprint_sha256: str
    spki_pin_sha256: str
    is_self_signed: bool

    def __hash__(self) -> int:
        return hash(self.raw_der)

    @property
    def subject_cn(self) -> Optional[str]:
        return self.subject.get("CN")

    @property
    def issuer_cn(self) -> Optional[str]:
        return self.issuer.get("CN")

    @property
    def subject_dn(self) -> str:
        return format_name(self.subject)

    @property
    def issuer_dn(self) -> str:
        return format_name(self.issuer)

    @property
    def display_name(self) -> str:
        """Common name, or the full subject DN when there is none."""
        return self.subject_cn or self.subject_dn

    def is_valid_at(self, when: datetime.datetime) -> bool:
        return self.valid_from <= when <= self.valid_to


def _attribute_key(attr: x509.NameAttribute) -> str:
    return SHORT_NAMES.get(attr.oid) or LONG_NAMES.get(attr.oid) or attr.oid.dotted_string


def name_to_attributes(name: x509.Name) -> Dict[str, str]:
    """Map a distinguished name to ``{short name: value}``.

    Attributes keep certificate order. A repeated key (two OU values, say)
    keeps only the last value.
    """
    attrs: Dict[str, str] = {}
    for attr in name:
        value = attr.value
        if isinstance(value, bytes):
            value = value.hex()
        attrs[_attribute_key(attr)] = value
    return attrs


def canonical_name(attrs: Dict[str, str]) -> str:
    """Order-independent string form of an attribute map, used for name equality."""
    return ",".join(f"{key}={attrs[key]}" for key in sorted(attrs))


def format_name(attrs: Dict[str, str]) -> str:
    """Human readable DN in certificate order, e.g. ``C=US, O=Example, CN=Example CA``."""
    if not attrs:
        return "(empty DN)"
    return ", ".join(f"{key}={value}" for key, value in attrs.items())


def _colon_hex(digest: bytes) -> str:
    return ":".join(f"{b:02X}" for b in digest)


def fingerprint(cert: Union[Certificate, bytes], algorithm: str = "sha256") -> str:
    """Colon separated upper-case hex digest of the full DER encoding.

    Parameters
    ----------
    cert : Certificate or bytes
        Parsed certificate, or its DER bytes.
    algorithm : str, optional
        ``"sha1"`` or ``"sha256"`` (default).
    """
    der = cert.raw_der if isinstance(cert, Certificate) else cert
    try:
        hash_func = _HASHES[algorithm.lower().replace("-", "")]
    except KeyError:
        raise ValueError(f"Unsupported fingerprint algorithm: {algorithm}") from None
    return _colon_hex(hash_func(der).digest())


def spki_pin(cert: Union[Certificate, bytes]) -> str:
    """Base64 SHA-256 over the DER SubjectPublicKeyInfo (HPKP ``pin-sha256``)."""
    spki_der = cert.spki_der if isinstance(cert, Certificate) else cert
    return base64.b64encode(hashlib.sha256(spki_der).digest()).decode("ascii")


def extract_ca_issuers_url(aia_value) -> Optional[str]:
    """Return the CA-Issuers URL from an AIA extension value.

    *aia_value* is either the decoded list of access descriptions, or raw
    bytes/text when the extension could not be decoded. Raw input is scanned
    for the first ``http(s)://...crt`` URL.
    """
    if aia_value is None:
        return None
    if isinstance(aia_value, (bytes, bytearray)):
        aia_value = bytes(aia_value).decode("latin-1")
    if isinstance(aia_value, str):
        match = _CRT_URL_RE.search(aia_value)
        return match.group(0) if match else None

    for access in aia_value:
        if access.access_method.dotted_string != CA_ISSUERS_OID:
            continue
        location = access.access_location
        if isinstance(location, x509.UniformResourceIdentifier):
            return location.value
    return None


def _get_extension_value(extensions: Optional[x509.Extensions], ext_class):
    if extensions is None:
        return None
    try:
        return extensions.get_extension_for_class(ext_class).value
    except x509.ExtensionNotFound:
        return None


def _subject_alt_names(san) -> Tuple[str, ...]:
    if san is None:
        return ()
    names = []
    for general_name in san:
        if isinstance(general_name, x509.DNSName):
            names.append(f"DNS:{general_name.value}")
        elif isinstance(general_name, x509.IPAddress):
            names.append(f"IP:{general_name.value}")
        elif isinstance(general_name, x509.UniformResourceIdentifier):
            names.append(f"URI:{general_name.value}")
        elif isinstance(general_name, x509.RFC822Name):
            names.append(f"Email:{general_name.value}")
    return tuple(names)


def _key_usage(ku) -> Tuple[str, ...]:
    if ku is None:
        return ()
    flags = [
        (ku.digital_signature, "digital_signature"),
        (ku.content_commitment, "non_repudiation"),
        (ku.key_encipherment, "key_encipherment"),
        (ku.data_encipherment, "data_encipherment"),
        (ku.key_agreement, "key_agreement"),
        (ku.key_cert_sign, "key_cert_sign"),
        (ku.crl_sign, "crl_sign"),
    ]
    # encipher_only/decipher_only are only defined with key_agreement
    if ku.key_agreement:
        flags.append((ku.encipher_only, "encipher_only"))
        flags.append((ku.decipher_only, "decipher_only"))
    return _key_usage_labels(name for enabled, name in flags if enabled)


def _key_usage_labels(names) -> Tuple[str, ...]:
    names = set(names)
    return tuple(label for name, label in KEY_USAGE_NAMES.items() if name in names)


def _eku_name(oid: x509.ObjectIdentifier) -> str:
    return EXTENDED_KEY_USAGE_NAMES.get(oid, oid.dotted_string)


def _extended_key_usage(eku) -> Tuple[str, ...]:
    if eku is None:
        return ()
    return tuple(_eku_name(oid) for oid in eku)


def _basic_constraints(bc) -> Optional[BasicConstraints]:
    if bc is None:
        return None
    return BasicConstraints(is_ca=bc.ca, path_length=bc.path_length)


def _decode_extensions(cert: x509.Certificate, raw_der: bytes) -> Dict[str, object]:
    """Decode the extensions shown on a :class:`Certificate`.

    cryptography parses the whole extension list at once and refuses all of
    it when a single extension is malformed. In that case the extensions are
    decoded one at a time with asn1crypto and only the broken ones are
    dropped.
    """
    try:
        extensions = cert.extensions
    except (ValueError, x509.DuplicateExtension) as e:
        logger.debug("Extension list rejected (%s), decoding extensions one by one", e)
        return _decode_extensions_individually(raw_der)

    return {
        "subject_alt_names": _subject_alt_names(_get_extension_value(extensions, x509.SubjectAlternativeName)),
        "key_usage": _key_usage(_get_extension_value(extensions, x509.KeyUsage)),
        "extended_key_usage": _extended_key_usage(_get_extension_value(extensions, x509.ExtendedKeyUsage)),
        "basic_constraints": _basic_constraints(_get_extension_value(extensions, x509.BasicConstraints)),
        "authority_info_access_url": extract_ca_issuers_url(
            _get_extension_value(extensions, x509.AuthorityInformationAccess)
        ),
    }


def _asn1_subject_alt_names(value) -> Tuple[str, ...]:
    return tuple(
        f"{_ASN1_SAN_PREFIXES[name.name]}:{name.native}"
        for name in value
        if name.name in _ASN1_SAN_PREFIXES
    )


def _asn1_basic_constraints(value) -> BasicConstraints:
    native = value.native
    return BasicConstraints(is_ca=bool(native["ca"]), path_length=native["path_len_constraint"])


def _asn1_ca_issuers_url(value) -> Optional[str]:
    for description in value:
        if description["access_method"].dotted != CA_ISSUERS_OID:
            continue
        location = description["access_location"]
        if location.name == "uniform_resource_identifier":
            return location.native
    return None


def _asn1_extended_key_usage(value) -> Tuple[str, ...]:
    return tuple(_eku_name(x509.ObjectIdentifier(purpose.dotted)) for purpose in value)


_ASN1_EXTENSION_DECODERS = {
    "subject_alt_name": ("subject_alt_names", _asn1_subject_alt_names),
    "key_usage": ("key_usage", lambda value: _key_usage_labels(value.native)),
    "extended_key_usage": ("extended_key_usage", _asn1_extended_key_usage),
    "basic_constraints": ("basic_constraints", _asn1_basic_constraints),
    "authority_information_access": ("authority_info_access_url", _asn1_ca_issuers_url),
}


def _decode_extensions_individually(raw_der: bytes) -> Dict[str, object]:
    decoded: Dict[str, object] = {
        "subject_alt_names": (),
        "key_usage": (),
        "extended_key_usage": (),
        "basic_constraints": None,
        "authority_info_access_url": None,
    }
    try:
        extensions = asn1_x509.Certificate.load(raw_der)["tbs_certificate"]["extensions"]
        count = 0 if isinstance(extensions, asn1_core.Void) else len(extensions)
    except ValueError as e:
        logger.debug("Cannot read the extension list: %s", e)
        return decoded

    for index in range(count):
        try:
            extension = extensions[index]
            name = extension["extn_id"].native
            if name not in _ASN1_EXTENSION_DECODERS:
                continue
            field_name, decode = _ASN1_EXTENSION_DECODERS[name]
            decoded[field_name] = decode(extension["extn_value"].parsed)
        except (ValueError, TypeError, KeyError) as e:
            logger.debug("Ignoring undecodable extension %d: %s", index + 1, e)
    return decoded


def _public_key_info(cert: x509.Certificate) -> Tuple[PublicKeyInfo, bytes]:
    pub = cert.public_key()
    spki_der = pub.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    if isinstance(pub, rsa.RSAPublicKey):
        numbers = pub.public_numbers()
        info = PublicKeyInfo("RSA", pub.key_size, modulus=numbers.n, exponent=numbers.e)
    elif isinstance(pub, ec.EllipticCurvePublicKey):
        info = PublicKeyInfo("EC", pub.key_size, curve=pub.curve.name)
    elif isinstance(pub, dsa.DSAPublicKey):
        info = PublicKeyInfo("DSA", pub.key_size)
    elif isinstance(pub, ed25519.Ed25519PublicKey):
        info = PublicKeyInfo("Ed25519", 256)
    elif isinstance(pub, ed448.Ed448PublicKey):
        info = PublicKeyInfo("Ed448", 456)
    else:
        info = PublicKeyInfo(type(pub).__name__)
    return info, spki_der


def _format_serial(serial: int) -> str:
    text = format(serial, "x")
    if len(text) % 2:
        text = "0" + text
    return text


def parse_certificate(pem_block: str, block_index: Optional[int] = None) -> Certificate:
    """Decode one PEM certificate block.

    Parameters
    ----------
    pem_block : str
        A single ``BEGIN/END CERTIFICATE`` block.
    block_index : int, optional
        Position of the block in a larger input, used in error messages.

    Returns
    -------
    Certificate
        The decoded certificate with derived fingerprints and pin.

    Raises
    ------
    MalformedCertificate
        If the block is not a structurally valid X.509 certificate.
    """
    where = f"block {block_index + 1}" if block_index is not None else "certificate"
    raw_der = pem_to_der(pem_block)
    try:
        cert = x509.load_der_x509_certificate(raw_der, backend=default_backend())
        subject = name_to_attributes(cert.subject)
        issuer = name_to_attributes(cert.issuer)
        valid_from = cert.not_valid_before_utc
        valid_to = cert.not_valid_after_utc
        serial = _format_serial(cert.serial_number)
        public_key, spki_der = _public_key_info(cert)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise MalformedCertificate(f"Failed to parse {where}: {e}", block_index) from e

    if valid_from > valid_to:
        raise MalformedCertificate(
            f"Failed to parse {where}: notBefore {valid_from} is after notAfter {valid_to}",
            block_index,
        )

    extensions = _decode_extensions(cert, raw_der)

    return Certificate(
        serial_number=serial,
        subject=subject,
        issuer=issuer,
        valid_from=valid_from,
        valid_to=valid_to,
        public_key=public_key,
        subject_alt_names=extensions["subject_alt_names"],
        key_usage=extensions["key_usage"],
        extended_key_usage=extensions["extended_key_usage"],
        basic_constraints=extensions["basic_constraints"],
        authority_info_access_url=extensions["authority_info_access_url"],
        raw_der=raw_der,
        raw_pem=pem_block.strip(),
        spki_der=spki_der,
        fingerprint_sha1=fingerprint(raw_der, "sha1"),
        fingerprint_sha256=fingerprint(raw_der, "sha256"),
        spki_pin_sha256=spki_pin(spki_der),
        is_self_signed=canonical_name(subject) == canonical_name(issuer),
    )


def parse_chain(text: Union[str, bytes]) -> List[Certificate]:
    """Parse every PEM block in *text*, keeping input order.

    Blocks that fail to parse are logged and skipped; the remaining blocks
    are still returned.

    Raises
    ------
    EmptyInputError, NoCertificatesFoundError
        If *text* holds no PEM blocks at all.
    NoCertificatesParsedError
        If every block failed to parse.
    """
    chain = []
    for index, block in enumerate(extract_pem_blocks(text)):
        try:
            chain.append(parse_certificate(block, block_index=index))
        except MalformedCertificate as e:
            logger.warning("Skipping certificate block %d: %s", index + 1, e)
            continue
    if not chain:
        raise NoCertificatesParsedError()
    return chain
