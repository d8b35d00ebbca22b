#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Build complete X.509 certificate chains from a leaf certificate using:
- Authority Information Access (AIA) CA Issuers URLs
- Certificate Transparency (crt.sh) lookups for better diagnostics
- A table of well-known root CA download URLs

The walk stops at the first self-signed certificate, after MAX_DEPTH
downloads, or on the first download error. In the last two cases the
certificates collected so far are still returned.
"""

import argparse
import enum
import functools
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional

from cert_errors import CertToolError, ChainUnresolvable, HtmlResponseError
from cert_lib import FETCH_TIMEOUT, FetchResponse, extract_pem_blocks, http_get, load_pem_file, response_to_pem
from cert_model import Certificate, format_name, parse_certificate, parse_chain
from download_root import KNOWN_ROOT_URLS, download_root, find_root_urls

logger = logging.getLogger(__name__)

MAX_DEPTH = 10
CRT_SH_URL = "https://crt.sh/"

Fetcher = Callable[[str], FetchResponse]


class ResolutionStatus(str, enum.Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    UNRESOLVABLE = "unresolvable"


@dataclass
class ChainResolution:
    """Outcome of one chain-building attempt.

    ``chain`` holds PEM blocks, leaf first. Re-parse them with
    :meth:`parse` to get :class:`Certificate` objects.
    """

    status: ResolutionStatus
    chain: List[str]
    notices: List[str] = field(default_factory=list)
    diagnostic: Optional[dict] = None

    @property
    def certificate_count(self) -> int:
        return len(self.chain)

    @property
    def full_chain_pem(self) -> str:
        return "\n".join(self.chain)

    @property
    def ok(self) -> bool:
        return self.status != ResolutionStatus.UNRESOLVABLE

    def parse(self) -> List[Certificate]:
        return parse_chain(self.full_chain_pem)

    def raise_for_status(self):
        """Raise :class:`ChainUnresolvable` if the chain could not be built."""
        if self.status == ResolutionStatus.UNRESOLVABLE:
            diagnostic = self.diagnostic or {}
            raise ChainUnresolvable(diagnostic.get("message", "Cannot build chain automatically"), diagnostic)

    def to_payload(self) -> dict:
        if self.status == ResolutionStatus.UNRESOLVABLE:
            payload = {"success": False}
            payload.update(self.diagnostic or {})
            # issuers downloaded before the walk stopped
            if self.certificate_count > 1:
                payload.update(
                    certificateCount=self.certificate_count,
                    fullChainPem=self.full_chain_pem,
                    certificates=list(self.chain),
                )
            return payload
        return {
            "success": True,
            "partial": self.status == ResolutionStatus.PARTIAL,
            "certificateCount": self.certificate_count,
            "fullChainPem": self.full_chain_pem,
            "certificates": list(self.chain),
            "notices": list(self.notices),
        }


class FallbackOutcome(NamedTuple):
    """Result of one fallback strategy: a certificate, or why there is none."""

    pem: Optional[str]
    reason: str
    context: Dict[str, object]


class IssuerChainResolver:
    """Reconstruct the issuer chain of a leaf certificate.

    Parameters
    ----------
    fetch : callable, optional
        ``fetch(url) -> FetchResponse``; raises on transport errors.
        Defaults to :func:`cert_lib.http_get`.
    known_roots : mapping, optional
        CA common name to root certificate URL.
    max_depth : int, optional
        Maximum number of issuer downloads (default: 10).
    """

    def __init__(
        self,
        fetch: Fetcher = http_get,
        known_roots: Mapping[str, str] = KNOWN_ROOT_URLS,
        max_depth: int = MAX_DEPTH,
    ):
        self.fetch = fetch
        self.known_roots = known_roots
        self.max_depth = max_depth

    def resolve(self, leaf_pem: str) -> ChainResolution:
        """Walk the issuer chain of the first certificate in *leaf_pem*.

        Raises
        ------
        EmptyInputError, NoCertificatesFoundError, MalformedCertificate
            If the leaf itself cannot be read.
        """
        leaf_block = extract_pem_blocks(leaf_pem)[0].strip()
        current = parse_certificate(leaf_block)
        chain = [leaf_block]
        notices: List[str] = []
        depth = 0

        while True:
            logger.debug("Certificate %d: subject=%s issuer=%s",
                         len(chain), current.subject_dn, current.issuer_dn)
            if current.is_self_signed:
                logger.info("Reached self-signed root certificate: %s", current.display_name)
                return self._done(ResolutionStatus.COMPLETE, chain, notices)

            if depth >= self.max_depth:
                notice = f"Reached maximum depth ({self.max_depth}), stopping chain fetch"
                logger.warning(notice)
                notices.append(notice)
                return self._done(ResolutionStatus.PARTIAL, chain, notices)

            url = current.authority_info_access_url
            if url is None:
                logger.info("No CA Issuers URL in %s", current.display_name)
                return self._resolve_without_aia(current, depth == 0, chain, notices)

            logger.info("Fetching issuer of %s from: %s", current.display_name, url)
            try:
                issuer_pem = self._fetch_pem(url)
                issuer = parse_certificate(issuer_pem)
            except CertToolError as e:
                notice = f"Error fetching issuer at depth {depth}: {e}; stopping chain fetch"
                logger.warning(notice)
                notices.append(notice)
                return self._done(ResolutionStatus.PARTIAL, chain, notices)

            chain.append(issuer_pem)
            logger.info("Added certificate %d to chain", len(chain))
            current = issuer
            depth += 1

    def _done(self, status, chain, notices, diagnostic=None) -> ChainResolution:
        logger.info("Built chain with %d certificate(s) (%s)", len(chain), status.value)
        return ChainResolution(status, chain, notices, diagnostic)

    def _fetch_pem(self, url: str) -> str:
        return response_to_pem(self.fetch(url), url)

    def _resolve_without_aia(self, cert, is_leaf, chain, notices) -> ChainResolution:
        strategies = [self._known_root]
        if is_leaf:
            strategies.insert(0, self._ct_log_hint)

        context: Dict[str, object] = {}
        reasons = []
        for strategy in strategies:
            outcome = strategy(cert)
            context.update(outcome.context)
            if outcome.pem is not None:
                chain.append(outcome.pem)
                notices.append(outcome.reason)
                return self._done(ResolutionStatus.COMPLETE, chain, notices)
            reasons.append(outcome.reason)

        diagnostic = self._diagnostic(cert, is_leaf, context, reasons)
        notices.extend(reasons)
        return self._done(ResolutionStatus.UNRESOLVABLE, chain, notices, diagnostic)

    def _ct_log_hint(self, cert: Certificate) -> FallbackOutcome:
        """Look the certificate up on crt.sh. Supplies diagnostics only."""
        query = cert.fingerprint_sha256.replace(":", "")
        url = f"{CRT_SH_URL}?q={query}&output=json"
        logger.info("Trying crt.sh fallback with fingerprint: %s", query)
        try:
            response = self.fetch(url)
            if "text/html" in (response.content_type or "").lower() or response.content.lstrip().startswith(b"<"):
                raise HtmlResponseError(url=url)
            results = json.loads(response.content.decode("utf-8"))
        except (CertToolError, ValueError, OSError) as e:
            logger.info("crt.sh fallback failed: %s", e)
            return FallbackOutcome(None, f"Certificate not found in CT logs ({e})", {"foundInCtLogs": False})

        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            logger.info("crt.sh fallback failed: no results")
            return FallbackOutcome(None, "No results from crt.sh", {"foundInCtLogs": False})

        entry = results[0]
        context: Dict[str, object] = {"foundInCtLogs": True}
        if entry.get("issuer_ca_id") is not None:
            context["issuerCaId"] = entry["issuer_ca_id"]
            context["issuerCaLink"] = f"{CRT_SH_URL}?caid={entry['issuer_ca_id']}"
            logger.info("Found issuer CA ID: %s", entry["issuer_ca_id"])
        if entry.get("issuer_name"):
            context["ctIssuerName"] = entry["issuer_name"]
        return FallbackOutcome(
            None, "Certificate found in CT logs, but CT logs do not supply issuer certificates", context
        )

    def _known_root(self, cert: Certificate) -> FallbackOutcome:
        issuer_cn = cert.issuer_cn
        if not issuer_cn:
            return FallbackOutcome(None, "Issuer has no common name to look up", {})
        if not find_root_urls(issuer_cn, self.known_roots):
            return FallbackOutcome(None, f"No known root certificate URL for {issuer_cn!r}", {})
        try:
            pem = download_root(issuer_cn, fetch=self.fetch, table=self.known_roots)
            parse_certificate(pem)
        except CertToolError as e:
            return FallbackOutcome(None, f"Failed to fetch root certificate: {e}", {})
        logger.info("Fetched root certificate for %s from known CA store", issuer_cn)
        return FallbackOutcome(pem, f"Root certificate for {issuer_cn!r} taken from the known root table", {})

    def _diagnostic(self, cert, is_leaf, context, reasons) -> dict:
        issuer_dn = format_name(cert.issuer)
        diagnostic = {
            "issuer": issuer_dn,
            "certificate": {
                "subject": cert.subject_cn or "Unknown",
                "issuer": issuer_dn,
                "serialNumber": cert.serial_number,
            },
            "crtShLink": f"{CRT_SH_URL}?q={cert.serial_number}",
            "reasons": list(reasons),
        }
        diagnostic.update(context)

        if not is_leaf:
            diagnostic.update({
                "error": "Cannot complete issuer chain automatically",
                "message": (
                    f"{cert.display_name} does not contain a CA Issuers URL and its issuer "
                    "is not in the known root table."
                ),
                "suggestion": "Search for the issuer certificate manually or provide the complete certificate chain.",
            })
        elif context.get("foundInCtLogs"):
            diagnostic.update({
                "error": "AIA extension not available",
                "message": (
                    "This certificate does not contain an AIA extension. The certificate was found in "
                    "Certificate Transparency logs, but automatic chain building requires the AIA extension."
                ),
                "suggestion": "Search for the issuer certificate manually or provide the complete certificate chain.",
            })
        else:
            diagnostic.update({
                "error": "Cannot fetch issuer chain automatically",
                "message": (
                    "This certificate does not contain an AIA extension and was not found in "
                    "Certificate Transparency logs."
                ),
                "suggestion": (
                    "Please provide the complete certificate chain manually. You can obtain it from "
                    "the server where this certificate is deployed."
                ),
                "help": "If you know the domain, you can fetch the chain using: "
                        "openssl s_client -connect domain.com:443 -showcerts",
            })
        return diagnostic


def resolve_issuer_chain(
    leaf_pem: str,
    fetch: Fetcher = http_get,
    max_depth: int = MAX_DEPTH,
) -> ChainResolution:
    return IssuerChainResolver(fetch=fetch, max_depth=max_depth).resolve(leaf_pem)


def print_chain_summary(resolution: ChainResolution):
    for i, cert in enumerate(resolution.parse(), 1):
        marker = " (ROOT - Self-signed)" if cert.is_self_signed else ""
        print(f"  {i}. {cert.display_name}{marker}", file=sys.stderr)


def main():
    parser = argparse.ArgumentParser(
        description="Build the issuer chain of leaf certificates by following AIA CA Issuers URLs."
    )
    parser.add_argument("leaf_certs", help="PEM file containing one or more leaf certificates")
    parser.add_argument("-o", "--output", help="Output file for the chains (default: stdout)")
    parser.add_argument("--max-depth", type=int, default=MAX_DEPTH, help="Maximum issuer downloads per leaf")
    parser.add_argument("--timeout", type=float, default=FETCH_TIMEOUT, help="Download timeout in seconds")
    parser.add_argument("--json", action="store_true", help="Print the result payloads as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, stream=sys.stderr)

    resolver = IssuerChainResolver(
        fetch=functools.partial(http_get, timeout=args.timeout),
        max_depth=args.max_depth,
    )
    try:
        leaf_blocks = extract_pem_blocks(load_pem_file(args.leaf_certs))
    except CertToolError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    resolutions = []
    for block in leaf_blocks:
        try:
            resolutions.append(resolver.resolve(block))
        except CertToolError as e:
            print(f"Skipping certificate: {e}", file=sys.stderr)

    if args.json:
        print(json.dumps([r.to_payload() for r in resolutions], indent=2))
    else:
        pems = [r.full_chain_pem + "\n" for r in resolutions if r.ok or r.certificate_count > 1]
        if args.output:
            with open(args.output, "w") as f:
                f.writelines(pems)
        else:
            sys.stdout.writelines(pems)

    complete = 0
    for resolution in resolutions:
        if resolution.ok:
            print(f"Chain with {resolution.certificate_count} certificate(s) ({resolution.status.value}):",
                  file=sys.stderr)
            print_chain_summary(resolution)
            complete += resolution.status == ResolutionStatus.COMPLETE
        else:
            diagnostic = resolution.diagnostic or {}
            print(f"{diagnostic.get('error')}: {diagnostic.get('message')}", file=sys.stderr)
            print(f"  Issuer: {diagnostic.get('issuer')}", file=sys.stderr)
            print(f"  Search: {diagnostic.get('crtShLink')}", file=sys.stderr)

    print(f"Built {complete} complete chain(s) out of {len(leaf_blocks)} certificate(s).", file=sys.stderr)
    sys.exit(0 if resolutions and all(r.ok for r in resolutions) else 1)


if __name__ == "__main__":
    main()
