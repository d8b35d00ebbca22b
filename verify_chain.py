#!/usr/bin/env python3
"""
Classify and locally verify an X.509 certificate chain from a PEM file.

Certificates are taken in the order they appear (leaf first). Every
certificate gets a role (Leaf, Intermediate, Root), its validity window is
checked against the current time and each certificate's issuer name is
compared with the subject name of the next one.

This is a local name-linkage check only: no signature is verified, no
revocation is checked and no trust store is consulted. Two unrelated
certificates with matching names will pass.
"""

from __future__ import annotations

import argparse
import datetime
import enum
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from cert_errors import CertToolError
from cert_lib import load_pem_file
from cert_model import Certificate, canonical_name, format_name, parse_chain

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    LEAF = "Leaf"
    INTERMEDIATE = "Intermediate"
    ROOT = "Root"
    UNKNOWN = "Unknown"


class Check(str, enum.Enum):
    NOT_YET_VALID = "NotYetValid"
    EXPIRED = "Expired"
    WITHIN_VALIDITY = "WithinValidity"
    BROKEN_CHAIN = "BrokenChain"
    LINK_VERIFIED = "LinkVerified"
    ROOT_REACHED = "RootReached"
    INCOMPLETE_CHAIN_WARNING = "IncompleteChainWarning"
    NO_CERTIFICATES = "NoCertificates"


FAILING_CHECKS = {Check.NOT_YET_VALID, Check.EXPIRED, Check.BROKEN_CHAIN, Check.NO_CERTIFICATES}


@dataclass(frozen=True)
class ReportEntry:
    check: Check
    index: Optional[int]
    message: str


@dataclass
class VerificationReport:
    entries: List[ReportEntry] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return bool(self.entries) and not any(e.check in FAILING_CHECKS for e in self.entries)

    @property
    def lines(self) -> List[str]:
        return [e.message for e in self.entries]

    def checks(self, check: Check) -> List[ReportEntry]:
        return [e for e in self.entries if e.check == check]


def role_of(cert: Certificate, index: int) -> Role:
    """Role of the certificate at *index* of a chain.

    Self-signed certificates are roots wherever they sit, so a lone
    self-signed certificate is a Root, not a Leaf.
    """
    if index < 0:
        return Role.UNKNOWN
    if cert.is_self_signed:
        return Role.ROOT
    if index == 0:
        return Role.LEAF
    return Role.INTERMEDIATE


def classify_chain(chain: Sequence[Certificate]) -> List[Role]:
    return [role_of(cert, i) for i, cert in enumerate(chain)]


def names_match(issuer: dict, subject: dict) -> bool:
    """Name equality used for chain linkage (same test as self-signed detection)."""
    return canonical_name(issuer) == canonical_name(subject)


def verify_chain(
    chain: Sequence[Certificate],
    now: Optional[datetime.datetime] = None,
) -> VerificationReport:
    """Check validity windows and issuer/subject linkage of *chain*.

    Produces one date line per certificate, followed by at most one linkage
    line, and a final line about the last certificate. A missing root is
    reported as a warning and does not make the chain invalid. A naive
    *now* is taken as UTC.
    """
    report = VerificationReport()
    if not chain:
        report.entries.append(ReportEntry(Check.NO_CERTIFICATES, None, "No certificates to verify."))
        return report

    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    roles = classify_chain(chain)

    for i, cert in enumerate(chain):
        tag = f"[{roles[i].value}] Cert {cert.display_name}"
        if now < cert.valid_from:
            report.entries.append(ReportEntry(
                Check.NOT_YET_VALID, i,
                f"{tag} is not yet valid (valid from {cert.valid_from.isoformat()}).",
            ))
        elif now > cert.valid_to:
            report.entries.append(ReportEntry(
                Check.EXPIRED, i,
                f"{tag} has EXPIRED (valid to {cert.valid_to.isoformat()}).",
            ))
        else:
            report.entries.append(ReportEntry(
                Check.WITHIN_VALIDITY, i, f"{tag} is within validity period.",
            ))

        if i < len(chain) - 1:
            parent = chain[i + 1]
            if names_match(cert.issuer, parent.subject):
                report.entries.append(ReportEntry(
                    Check.LINK_VERIFIED, i,
                    f"[Link Verified] {cert.display_name} is issued by {parent.display_name}.",
                ))
            else:
                report.entries.append(ReportEntry(
                    Check.BROKEN_CHAIN, i,
                    f"[Broken Chain] Cert {i + 1} ({cert.display_name}) claims issuer is "
                    f"{format_name(cert.issuer)}, but next cert is {format_name(parent.subject)}.",
                ))

    last = chain[-1]
    if last.is_self_signed:
        report.entries.append(ReportEntry(
            Check.ROOT_REACHED, len(chain) - 1,
            f"[Root] Chain terminates with a self-signed root: {last.display_name}.",
        ))
    else:
        report.entries.append(ReportEntry(
            Check.INCOMPLETE_CHAIN_WARNING, len(chain) - 1,
            "[Warning] Chain does not end with a self-signed root certificate (Incomplete chain?).",
        ))

    logger.debug("Verified chain of %d certificate(s): valid=%s", len(chain), report.valid)
    return report


def main():
    parser = argparse.ArgumentParser(
        description="Locally verify a PEM certificate chain (name linkage and validity, no signatures)."
    )
    parser.add_argument("chain", help="PEM file containing the chain, leaf first")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, stream=sys.stderr)

    try:
        chain = parse_chain(load_pem_file(args.chain))
    except CertToolError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    report = verify_chain(chain)
    for line in report.lines:
        print(line)
    print()
    print("Result: " + ("VALID" if report.valid else "INVALID") + " (local check, signatures not verified)")
    sys.exit(0 if report.valid else 2)


if __name__ == "__main__":
    main()
