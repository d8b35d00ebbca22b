#!/usr/bin/env python3
"""
Print OpenSSL one-liners for common certificate chores, filled in for an
optional target domain.
"""

import argparse
from typing import Callable, List, NamedTuple, Optional

DEFAULT_DOMAIN = "example.com"


class Command(NamedTuple):
    title: str
    description: str
    template: Callable[[str], str]


COMMANDS = (
    Command(
        "Get Remote Certificate Chain",
        "Download the full certificate chain from a remote server.",
        lambda domain: f"openssl s_client -showcerts -verify 5 -connect {domain}:443 < /dev/null",
    ),
    Command(
        "Generate HPKP Pin (SHA-256)",
        "Extract the SPKI SHA-256 fingerprint from a certificate file.",
        lambda domain: "openssl x509 -in certificate.pem -pubkey -noout | openssl pkey -pubin -outform der"
                       " | openssl dgst -sha256 -binary | openssl enc -base64",
    ),
    Command(
        "Verify Certificate Chain",
        "Verify a certificate against an intermediate bundle.",
        lambda domain: "openssl verify -CAfile intermediate.pem cert.pem",
    ),
    Command(
        "View Certificate Details",
        "Print text details of a PEM certificate.",
        lambda domain: "openssl x509 -in certificate.pem -text -noout",
    ),
    Command(
        "Check Certificate Expiry",
        "Check the end date of a remote certificate.",
        lambda domain: f"echo | openssl s_client -servername {domain} -connect {domain}:443 2>/dev/null"
                       " | openssl x509 -noout -dates",
    ),
)


def render_commands(domain: Optional[str] = None) -> List[dict]:
    domain = (domain or "").strip() or DEFAULT_DOMAIN
    return [
        {"title": c.title, "description": c.description, "command": c.template(domain)}
        for c in COMMANDS
    ]


def main():
    parser = argparse.ArgumentParser(description="Print OpenSSL commands for a target domain.")
    parser.add_argument("domain", nargs="?", help=f"Target domain (default: {DEFAULT_DOMAIN})")
    args = parser.parse_args()

    for item in render_commands(args.domain):
        print(f"# {item['title']}: {item['description']}")
        print(item["command"])
        print()


if __name__ == "__main__":
    main()
