#!/usr/bin/env python3
"""
Print the details of every certificate in a PEM file: role in the chain,
subject and issuer DNs, validity, serial number, SANs, key usages, basic
constraints, AIA CA Issuers URL, SHA-1/SHA-256 fingerprints and the HPKP
SPKI pin.
"""

import argparse
import logging
import sys

from cert_errors import CertToolError
from cert_lib import load_pem_file
from cert_model import parse_chain
from verify_chain import classify_chain


def describe(cert, role):
    lines = [
        f"{role.value} certificate: {cert.display_name}",
        f"  Subject : {cert.subject_dn}",
        f"  Issuer  : {cert.issuer_dn}",
        f"  Valid   : {cert.valid_from.isoformat()}  →  {cert.valid_to.isoformat()}",
        f"  Serial  : {cert.serial_number}",
    ]
    key = cert.public_key
    key_desc = key.algorithm
    if key.key_size:
        key_desc += f" {key.key_size} bit"
    if key.curve:
        key_desc += f" ({key.curve})"
    lines.append(f"  Key     : {key_desc}")
    if cert.subject_alt_names:
        lines.append(f"  SANs    : {', '.join(cert.subject_alt_names)}")
    if cert.key_usage:
        lines.append(f"  Usage   : {', '.join(cert.key_usage)}")
    if cert.extended_key_usage:
        lines.append(f"  Ext use : {', '.join(cert.extended_key_usage)}")
    if cert.basic_constraints is not None:
        bc = cert.basic_constraints
        path = "" if bc.path_length is None else f", pathlen={bc.path_length}"
        lines.append(f"  Basic   : CA={'TRUE' if bc.is_ca else 'FALSE'}{path}")
    if cert.authority_info_access_url:
        lines.append(f"  AIA     : {cert.authority_info_access_url}")
    lines.append(f"  SHA-1   : {cert.fingerprint_sha1}")
    lines.append(f"  SHA-256 : {cert.fingerprint_sha256}")
    lines.append(f"  Pin     : pin-sha256=\"{cert.spki_pin_sha256}\"")
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Show details of all certificates in a PEM file.")
    parser.add_argument("pem_file", help="PEM file with one or more certificates")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)

    try:
        chain = parse_chain(load_pem_file(args.pem_file))
    except CertToolError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    for cert, role in zip(chain, classify_chain(chain)):
        print(describe(cert, role))
        print()


if __name__ == "__main__":
    main()
