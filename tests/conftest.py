import datetime
import ipaddress
from types import SimpleNamespace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtendedKeyUsageOID, NameOID

from cert_errors import NetworkError
from cert_lib import FetchResponse

NOW = datetime.datetime.now(datetime.timezone.utc)
DAY = datetime.timedelta(days=1)

ROOT_URL = "http://certs.example.test/root.crt"
INTERMEDIATE_URL = "http://certs.example.test/intermediate.crt"


def make_name(cn, org="Example Trust", country="CH"):
    return x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, country),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, org),
        x509.NameAttribute(NameOID.COMMON_NAME, cn),
    ])


def build_cert(
    subject,
    issuer,
    public_key,
    signing_key,
    not_before=None,
    not_after=None,
    aia_url=None,
    ca=False,
    san=None,
    leaf_usages=False,
    extra_extensions=(),
):
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or NOW - 30 * DAY)
        .not_valid_after(not_after or NOW + 365 * DAY)
        .add_extension(x509.BasicConstraints(ca=ca, path_length=0 if ca else None), critical=True)
    )
    if aia_url:
        builder = builder.add_extension(
            x509.AuthorityInformationAccess([
                x509.AccessDescription(
                    AuthorityInformationAccessOID.OCSP,
                    x509.UniformResourceIdentifier("http://ocsp.example.test"),
                ),
                x509.AccessDescription(
                    AuthorityInformationAccessOID.CA_ISSUERS,
                    x509.UniformResourceIdentifier(aia_url),
                ),
            ]),
            critical=False,
        )
    if san:
        builder = builder.add_extension(x509.SubjectAlternativeName(san), critical=False)
    if leaf_usages:
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=True,
                data_encipherment=False, key_agreement=False, key_cert_sign=False,
                crl_sign=False, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        ).add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
    for extension in extra_extensions:
        builder = builder.add_extension(extension, critical=False)
    return builder.sign(signing_key, hashes.SHA256())


def to_pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def to_der(cert):
    return cert.public_bytes(serialization.Encoding.DER)


@pytest.fixture(scope="session")
def root_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def intermediate_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def leaf_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def pki(root_key, intermediate_key, leaf_key):
    """Root -> intermediate -> leaf, all valid now, with AIA pointing upwards."""
    root_name = make_name("Test Root CA")
    intermediate_name = make_name("Test Intermediate CA")
    leaf_name = make_name("www.example.test", org="Example Shop")

    root = build_cert(root_name, root_name, root_key.public_key(), root_key, ca=True)
    intermediate = build_cert(
        intermediate_name, root_name, intermediate_key.public_key(), root_key,
        aia_url=ROOT_URL, ca=True,
    )
    leaf = build_cert(
        leaf_name, intermediate_name, leaf_key.public_key(), intermediate_key,
        aia_url=INTERMEDIATE_URL,
        san=[
            x509.DNSName("www.example.test"),
            x509.DNSName("example.test"),
            x509.IPAddress(ipaddress.ip_address("192.0.2.10")),
            x509.UniformResourceIdentifier("https://example.test/"),
            x509.RFC822Name("admin@example.test"),
        ],
        leaf_usages=True,
    )
    return SimpleNamespace(
        root=root,
        intermediate=intermediate,
        leaf=leaf,
        root_pem=to_pem(root),
        intermediate_pem=to_pem(intermediate),
        leaf_pem=to_pem(leaf),
        root_name=root_name,
        intermediate_name=intermediate_name,
    )


class FakeFetcher:
    """In-memory stand-in for cert_lib.http_get.

    *routes* maps URL to a FetchResponse, or to an exception to raise.
    Unknown URLs raise the *default* exception.
    """

    def __init__(self, routes=None, default=None):
        self.routes = dict(routes or {})
        self.default = default
        self.calls = []

    def __call__(self, url):
        self.calls.append(url)
        result = self.routes.get(url)
        if result is None:
            for prefix, value in self.routes.items():
                if prefix.endswith("*") and url.startswith(prefix[:-1]):
                    result = value
                    break
        if result is None:
            raise self.default or NetworkError(f"Failed to fetch {url}", code="ECONNREFUSED", url=url)
        if isinstance(result, Exception):
            raise result
        return result


def der_response(cert, content_type="application/pkix-cert"):
    return FetchResponse(to_der(cert), content_type)
