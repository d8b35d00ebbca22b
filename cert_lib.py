"""Utility functions for working with X.509 certificates.

Provides centralized functions for PEM framing, loading certificates and
downloading certificate material. Shared by all scripts.
"""

from __future__ import annotations

import base64
import binascii
import errno
import logging
import os
import re
from typing import List, NamedTuple, Union

import requests
import urllib3
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from cert_errors import (
    EmptyDERError,
    EmptyInputError,
    HtmlResponseError,
    MalformedCertificate,
    NetworkError,
    NoCertificatesFoundError,
)

__all__ = [
    "FETCH_TIMEOUT",
    "FetchResponse",
    "extract_pem_blocks",
    "der_to_pem",
    "pem_to_der",
    "load_pem_file",
    "http_get",
    "response_to_pem",
]

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 10

PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_END = "-----END CERTIFICATE-----"
PEM_BLOCK_RE = re.compile(
    re.escape(PEM_BEGIN) + r"[\s\S]+?" + re.escape(PEM_END)
)
_ERRNO_RE = re.compile(r"\[Errno (-?\d+)\]")


class FetchResponse(NamedTuple):
    content: bytes
    content_type: str


def _as_text(data: Union[str, bytes]) -> str:
    if isinstance(data, bytes):
        return data.decode("ascii", errors="ignore")
    return data


def extract_pem_blocks(text: Union[str, bytes]) -> List[str]:
    """Return every ``BEGIN/END CERTIFICATE`` block found in *text*.

    Parameters
    ----------
    text : str or bytes
        Arbitrary text that may contain PEM certificate blocks.

    Returns
    -------
    list of str
        The blocks in the order they appear, delimiters included.

    Raises
    ------
    EmptyInputError
        If the input is empty after stripping whitespace.
    NoCertificatesFoundError
        If no delimited block exists.
    """
    text = _as_text(text or "")
    if not text.strip():
        raise EmptyInputError()
    blocks = PEM_BLOCK_RE.findall(text)
    if not blocks:
        raise NoCertificatesFoundError()
    return blocks


def der_to_pem(der_bytes: bytes) -> str:
    """Wrap DER bytes as a PEM certificate block (64 character lines)."""
    if not der_bytes:
        raise EmptyDERError()
    b64 = base64.b64encode(der_bytes).decode("ascii")
    lines = [b64[i:i + 64] for i in range(0, len(b64), 64)]
    return PEM_BEGIN + "\n" + "\n".join(lines) + "\n" + PEM_END


def pem_to_der(pem: Union[str, bytes]) -> bytes:
    """Decode the first PEM certificate block in *pem* back to DER bytes."""
    block = extract_pem_blocks(pem)[0]
    body = block[len(PEM_BEGIN):-len(PEM_END)]
    try:
        return base64.b64decode("".join(body.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedCertificate(f"Invalid base64 in PEM block: {e}") from e


def load_pem_file(filename: str) -> str:
    """Read a PEM file as text. Returns an empty string if it doesn't exist."""
    if not os.path.exists(filename):
        return ""
    with open(filename, "rb") as f:
        return f.read().decode("utf-8", errors="replace")


def _transport_code(exc: BaseException) -> str:
    if isinstance(exc, requests.Timeout):
        return "ETIMEDOUT"
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return str(exc.response.status_code)

    seen = exc
    while seen is not None:
        err = getattr(seen, "errno", None)
        if isinstance(err, int):
            return errno.errorcode.get(err, str(err))
        seen = seen.__cause__ or seen.__context__

    match = _ERRNO_RE.search(str(exc))
    if match:
        err = int(match.group(1))
        return errno.errorcode.get(err, str(err))
    return type(exc).__name__


def http_get(
    url: str,
    *,
    timeout: float = FETCH_TIMEOUT,
    verify: bool = False,
) -> FetchResponse:
    """Download *url* and return its body and content type.

    Parameters
    ----------
    url : str
        ``http://`` or ``https://`` URL to download.
    timeout : float, optional
        Request timeout in seconds (default: 10).
    verify : bool, optional
        Enable SSL certificate verification (default: False).

    Returns
    -------
    FetchResponse
        Raw body bytes and the ``Content-Type`` header (empty if absent).

    Raises
    ------
    NetworkError
        On unsupported schemes, connection errors, timeouts and HTTP error
        statuses. ``code`` carries the transport error code.
    """
    if not isinstance(url, str) or not url.strip().lower().startswith(("http://", "https://")):
        raise NetworkError(f"Unsupported URL: {url!r}", code="EINVAL", url=url)
    url = url.strip()

    logger.debug("GET %s", url)
    try:
        r = requests.get(url, timeout=timeout, verify=verify)
        r.raise_for_status()
    except requests.RequestException as e:
        raise NetworkError(f"Failed to fetch {url}: {e}", code=_transport_code(e), url=url) from e
    return FetchResponse(r.content, r.headers.get("Content-Type", ""))


def response_to_pem(response: FetchResponse, url: str = "") -> str:
    """Turn a downloaded certificate body into a single PEM block.

    HTML bodies are rejected, by content type or by a leading ``<``. PEM
    bodies are returned as-is (first block), PKCS#7 bundles yield their
    first certificate, anything else is framed as DER.
    """
    content, content_type = response
    if "text/html" in (content_type or "").lower():
        raise HtmlResponseError(url=url)
    if not content:
        raise NetworkError("Empty response from CA server", code="EMPTY_RESPONSE", url=url)
    # error pages served with a certificate content type
    if content.lstrip()[:1] == b"<":
        raise HtmlResponseError(url=url)

    if PEM_BEGIN.encode() in content:
        return extract_pem_blocks(content)[0]

    if "pkcs7" in (content_type or "").lower() or url.lower().endswith((".p7c", ".p7b")):
        try:
            certs = pkcs7.load_der_pkcs7_certificates(content)
        except ValueError as e:
            raise MalformedCertificate(f"Failed to process PKCS#7 bundle from {url}: {e}") from e
        if not certs:
            raise MalformedCertificate(f"PKCS#7 bundle from {url} contains no certificates")
        return der_to_pem(certs[0].public_bytes(serialization.Encoding.DER))

    return der_to_pem(content)
