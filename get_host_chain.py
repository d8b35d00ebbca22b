#!/usr/bin/env python3
"""
Fetch the certificate chain a TLS server presents, together with the
negotiated protocol version and cipher suite.

The chain is returned exactly as the server sent it (normally leaf first)
and is not verified. Use --info for a short summary of the leaf certificate
(expiry, SANs, fingerprint) instead of the PEM chain.
"""

import argparse
import datetime
import errno
import json
import logging
import math
import select
import socket
import sys
from typing import List, NamedTuple, Optional

from cryptography.hazmat.primitives import serialization
from OpenSSL import SSL

from cert_errors import CertToolError, MalformedCertificate, NetworkError
from cert_lib import FETCH_TIMEOUT, der_to_pem
from cert_model import Certificate, parse_certificate
from verify_chain import verify_chain

logger = logging.getLogger(__name__)

DEFAULT_PORT = 443


class HostChain(NamedTuple):
    hostname: str
    port: int
    certificates: List[bytes]
    tls_version: Optional[str]
    cipher_suite: Optional[str]


def _socket_error_code(e: OSError) -> str:
    if isinstance(e, socket.timeout):
        return "ETIMEDOUT"
    if isinstance(e, socket.gaierror):
        return "ENOTFOUND"
    if e.errno is not None:
        return errno.errorcode.get(e.errno, str(e.errno))
    return type(e).__name__


def _handshake(conn: SSL.Connection, sock: socket.socket, timeout: float):
    while True:
        try:
            conn.do_handshake()
            return
        except SSL.WantReadError:
            readable, _, _ = select.select([sock], [], [], timeout)
            if not readable:
                raise socket.timeout("TLS handshake timed out")
        except SSL.WantWriteError:
            _, writable, _ = select.select([], [sock], [], timeout)
            if not writable:
                raise socket.timeout("TLS handshake timed out")


def fetch_host_chain(hostname: str, port: int = DEFAULT_PORT, timeout: float = FETCH_TIMEOUT) -> HostChain:
    """Connect to *hostname*:*port* and return the presented chain as DER.

    Certificate verification is disabled so self-signed and broken chains
    can be inspected.

    Raises
    ------
    NetworkError
        On DNS, connection, timeout or handshake failures (``code`` holds
        e.g. ``ENOTFOUND``, ``ECONNREFUSED``, ``ETIMEDOUT``, ``EPROTO``), or
        when the server presents no certificate.
    """
    if not hostname:
        raise NetworkError("Hostname is required", code="EINVAL")

    context = SSL.Context(SSL.TLS_CLIENT_METHOD)
    context.set_verify(SSL.VERIFY_NONE, lambda *args: True)

    logger.info("Fetching certificate chain from %s:%s", hostname, port)
    try:
        sock = socket.create_connection((hostname, port), timeout=timeout)
    except OSError as e:
        code = _socket_error_code(e)
        if code == "ETIMEDOUT":
            raise NetworkError(
                f"Connection to {hostname}:{port} timed out after {timeout:g} seconds", code=code
            ) from e
        raise NetworkError(f"Failed to connect to {hostname}:{port}. {e}", code=code) from e

    conn = SSL.Connection(context, sock)
    try:
        conn.set_tlsext_host_name(hostname.encode("idna"))
        conn.set_connect_state()
        _handshake(conn, sock, timeout)
        peer_chain = conn.get_peer_cert_chain() or []
        certificates = [
            c.to_cryptography().public_bytes(serialization.Encoding.DER) for c in peer_chain
        ]
        tls_version = conn.get_protocol_version_name()
        cipher_name = conn.get_cipher_name()
        cipher_suite = f"{cipher_name} ({conn.get_cipher_version()})" if cipher_name else None
    except socket.timeout as e:
        raise NetworkError(
            f"Connection to {hostname}:{port} timed out after {timeout:g} seconds", code="ETIMEDOUT"
        ) from e
    except SSL.Error as e:
        raise NetworkError(f"TLS handshake with {hostname}:{port} failed: {e}", code="EPROTO") from e
    except OSError as e:
        raise NetworkError(f"Failed to connect to {hostname}:{port}. {e}", code=_socket_error_code(e)) from e
    finally:
        conn.close()

    if not certificates:
        raise NetworkError(f"Could not retrieve certificate from {hostname}:{port}", code="ENOCERT")

    logger.info("Successfully fetched %d certificate(s) from %s:%s", len(certificates), hostname, port)
    return HostChain(hostname, port, certificates, tls_version, cipher_suite)


def parse_host_chain(host_chain: HostChain) -> List[Certificate]:
    """Parse the fetched DER certificates, skipping any that fail."""
    chain = []
    for index, der in enumerate(host_chain.certificates):
        try:
            chain.append(parse_certificate(der_to_pem(der), block_index=index))
        except CertToolError as e:
            logger.warning("Skipping certificate %d from %s: %s", index + 1, host_chain.hostname, e)
    return chain


def chain_payload(host_chain: HostChain) -> dict:
    certificates = []
    for cert in parse_host_chain(host_chain):
        certificates.append({
            "pem": cert.raw_pem,
            "subject": dict(cert.subject),
            "issuer": dict(cert.issuer),
            "validFrom": cert.valid_from.isoformat(),
            "validTo": cert.valid_to.isoformat(),
            "fingerprint": cert.fingerprint_sha1,
            "serialNumber": cert.serial_number.upper(),
            "subjectAltNames": list(cert.subject_alt_names),
        })
    return {
        "success": True,
        "hostname": host_chain.hostname,
        "port": host_chain.port,
        "certificateCount": len(certificates),
        "certificates": certificates,
        "fullChainPem": "\n".join(c["pem"] for c in certificates),
    }


def domain_info(host_chain: HostChain, now: Optional[datetime.datetime] = None) -> dict:
    """Summary of the leaf certificate and the negotiated TLS parameters."""
    chain = parse_host_chain(host_chain)
    if not chain:
        raise MalformedCertificate(f"No parsable certificate received from {host_chain.hostname}")
    leaf = chain[0]
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    days_until_expiry = math.floor((leaf.valid_to - now).total_seconds() / 86400)
    return {
        "hostname": host_chain.hostname,
        "port": host_chain.port,
        "certificate": {
            "subject": leaf.subject_cn or "N/A",
            "issuer": leaf.issuer_cn or "N/A",
            "validFrom": leaf.valid_from.isoformat(),
            "validTo": leaf.valid_to.isoformat(),
            "daysUntilExpiry": days_until_expiry,
            "isExpired": days_until_expiry < 0,
            "serialNumber": leaf.serial_number.upper(),
            "fingerprint": leaf.fingerprint_sha256,
            "subjectAltNames": [san.split(":", 1)[1] for san in leaf.subject_alt_names],
        },
        "tlsVersion": host_chain.tls_version or "Unknown",
        "cipherSuite": host_chain.cipher_suite or "Unknown",
    }


def parse_target(target: str, default_port: int = DEFAULT_PORT):
    """Split ``host[:port]`` (a leading ``https://`` is ignored)."""
    target = target.strip()
    if "://" in target:
        target = target.split("://", 1)[1]
    target = target.split("/", 1)[0]
    host, sep, port = target.rpartition(":")
    if sep and port.isdigit():
        return host, int(port)
    return target, default_port


def main():
    parser = argparse.ArgumentParser(description="Fetch the certificate chain presented by a TLS server.")
    parser.add_argument("target", help="host or host:port (default port 443)")
    parser.add_argument("--port", type=int, help="Port, overrides the one in target")
    parser.add_argument("--timeout", type=float, default=FETCH_TIMEOUT, help="Connection timeout in seconds")
    parser.add_argument("--info", action="store_true", help="Print a summary of the leaf certificate")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of PEM/text")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, stream=sys.stderr)

    host, port = parse_target(args.target)
    if args.port:
        port = args.port

    try:
        host_chain = fetch_host_chain(host, port, timeout=args.timeout)
        payload = domain_info(host_chain) if args.info else chain_payload(host_chain)
    except CertToolError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(payload, indent=2))
        return

    if args.info:
        cert = payload["certificate"]
        print(f"Host        : {payload['hostname']}:{payload['port']}")
        print(f"Subject     : {cert['subject']}")
        print(f"Issuer      : {cert['issuer']}")
        print(f"Valid       : {cert['validFrom']}  →  {cert['validTo']}")
        if cert["isExpired"]:
            print(f"Status      : Expired {abs(cert['daysUntilExpiry'])} days ago")
        else:
            print(f"Status      : Expires in {cert['daysUntilExpiry']} days")
        print(f"Serial      : {cert['serialNumber']}")
        print(f"SHA-256     : {cert['fingerprint']}")
        print(f"SANs        : {', '.join(cert['subjectAltNames']) or '-'}")
        print(f"TLS version : {payload['tlsVersion']}")
        print(f"Cipher      : {payload['cipherSuite']}")
        return

    print(payload["fullChainPem"])
    report = verify_chain(parse_host_chain(host_chain))
    for line in report.lines:
        print(line, file=sys.stderr)


if __name__ == "__main__":
    main()
