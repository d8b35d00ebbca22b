"""Exceptions raised by the certificate chain tools.

Every error derives from :class:`CertToolError` so the scripts can report
any failure with a single ``except`` clause.
"""

from __future__ import annotations

from typing import Optional


class CertToolError(Exception):
    """Base class for all certificate tool errors."""


class InputError(CertToolError):
    """The supplied text or bytes cannot be used as certificate input."""


class EmptyInputError(InputError):
    def __init__(self, message: str = "Empty PEM input provided"):
        super().__init__(message)


class NoCertificatesFoundError(InputError):
    def __init__(self, message: str = "No valid PEM certificate blocks found in input"):
        super().__init__(message)


class NoCertificatesParsedError(InputError):
    def __init__(self, message: str = "All certificate blocks failed to parse"):
        super().__init__(message)


class EmptyDERError(InputError):
    def __init__(self, message: str = "Empty or invalid DER data"):
        super().__init__(message)


class MalformedCertificate(CertToolError):
    """A single certificate block violates the ASN.1/X.509 structure."""

    def __init__(self, message: str, block_index: Optional[int] = None):
        super().__init__(message)
        self.block_index = block_index


class UnsupportedKeyFormat(CertToolError):
    def __init__(
        self,
        message: str = (
            "Invalid private key format. Expected PEM format with "
            "BEGIN PRIVATE KEY or BEGIN RSA PRIVATE KEY header."
        ),
    ):
        super().__init__(message)


class KeyParseError(CertToolError):
    """A private key block was found but could not be loaded."""


class NetworkError(CertToolError):
    """A fetch failed: connection refused, timeout, HTTP error status, ...

    ``code`` carries the underlying transport error code when one is known
    (an errno name such as ``ECONNREFUSED``, ``ETIMEDOUT`` or an HTTP status).
    """

    def __init__(self, message: str, code: Optional[str] = None, url: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.url = url


class HtmlResponseError(NetworkError):
    """The server answered with an HTML page instead of certificate data."""

    def __init__(self, url: Optional[str] = None):
        super().__init__("Received HTML instead of certificate", code="HTML_RESPONSE", url=url)


class ChainUnresolvable(CertToolError):
    """Every strategy for completing an issuer chain has been exhausted.

    ``diagnostic`` is the structured failure payload (issuer DN, crt.sh link,
    suggestion) that explains why.
    """

    def __init__(self, message: str, diagnostic: Optional[dict] = None):
        super().__init__(message)
        self.diagnostic = diagnostic or {}

    @property
    def issuer_dn(self) -> Optional[str]:
        return self.diagnostic.get("issuer")

    @property
    def crt_sh_link(self) -> Optional[str]:
        return self.diagnostic.get("crtShLink")
