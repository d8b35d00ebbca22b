#!/usr/bin/env python3
"""
Download well-known root CA certificates by common name from the CA's own
repository (DER, PEM or PKCS#7), convert to PEM and append them to a file.

The lookup table is also the last fallback of download_chain.py when a
certificate carries no AIA URL for its issuer.
"""

import argparse
import logging
import os
import sys
from types import MappingProxyType
from typing import Callable, List, Mapping, Tuple

from cert_errors import CertToolError, NetworkError
from cert_lib import FetchResponse, http_get, response_to_pem

logger = logging.getLogger(__name__)

KNOWN_ROOT_URLS: Mapping[str, str] = MappingProxyType({
    # DigiCert
    "DigiCert Global Root CA": "http://cacerts.digicert.com/DigiCertGlobalRootCA.crt",
    "DigiCert Global Root G2": "http://cacerts.digicert.com/DigiCertGlobalRootG2.crt",
    "DigiCert Global Root G3": "http://cacerts.digicert.com/DigiCertGlobalRootG3.crt",
    "DigiCert High Assurance EV Root CA": "http://cacerts.digicert.com/DigiCertHighAssuranceEVRootCA.crt",
    "DigiCert Assured ID Root CA": "http://cacerts.digicert.com/DigiCertAssuredIDRootCA.crt",
    "DigiCert Assured ID Root G2": "http://cacerts.digicert.com/DigiCertAssuredIDRootG2.crt",
    "DigiCert Assured ID Root G3": "http://cacerts.digicert.com/DigiCertAssuredIDRootG3.crt",
    "DigiCert Trusted Root G4": "http://cacerts.digicert.com/DigiCertTrustedRootG4.crt",
    # GeoTrust
    "GeoTrust Global CA": "http://cacerts.geotrust.com/GeoTrustGlobalCA.crt",
    "GeoTrust Primary Certification Authority": "http://cacerts.geotrust.com/GeoTrustPCA.crt",
    "GeoTrust Primary Certification Authority - G2": "http://cacerts.geotrust.com/GeoTrustPCA-G2.crt",
    "GeoTrust Primary Certification Authority - G3": "http://cacerts.geotrust.com/GeoTrustPCA-G3.crt",
    "GeoTrust Universal CA": "http://cacerts.geotrust.com/GeoTrustUniversalCA.crt",
    # Let's Encrypt
    "ISRG Root X1": "https://letsencrypt.org/certs/isrgrootx1.der",
    "ISRG Root X2": "https://letsencrypt.org/certs/isrg-root-x2.der",
    # GlobalSign
    "GlobalSign Root CA": "http://secure.globalsign.com/cacert/root-r1.crt",
    "GlobalSign Root CA - R2": "http://secure.globalsign.com/cacert/root-r2.crt",
    "GlobalSign Root CA - R3": "http://secure.globalsign.com/cacert/root-r3.crt",
    "GlobalSign Root CA - R6": "http://secure.globalsign.com/cacert/root-r6.crt",
    "GlobalSign ECC Root CA - R4": "http://secure.globalsign.com/cacert/root-r4.crt",
    "GlobalSign ECC Root CA - R5": "http://secure.globalsign.com/cacert/root-r5.crt",
    # Sectigo (formerly Comodo)
    "AAA Certificate Services": "http://crt.comodoca.com/AAAcertificateservices.crt",
    "USERTrust RSA Certification Authority": "http://crt.usertrust.com/USERTrustRSACertificationAuthority.crt",
    "USERTrust ECC Certification Authority": "http://crt.usertrust.com/USERTrustECCCertificationAuthority.crt",
    "Sectigo Public Server Authentication Root R46": "http://crt.sectigo.com/SectigoPublicServerAuthenticationRootR46.crt",
    "Sectigo Public Server Authentication Root E46": "http://crt.sectigo.com/SectigoPublicServerAuthenticationRootE46.crt",
    # IdenTrust
    "IdenTrust Commercial Root CA 1": "http://validation.identrust.com/roots/dstrootcax3.p7c",
    "IdenTrust Public Sector Root CA 1": "http://validation.identrust.com/roots/dstrootcax3.p7c",
    "DST Root CA X3": "https://letsencrypt.org/certs/trustid-x3-root.pem.txt",
    # Entrust
    "Entrust Root Certification Authority": "http://web.entrust.com/root-certificates/entrust_root_ca.cer",
    "Entrust Root Certification Authority - G2": "http://web.entrust.com/root-certificates/entrust_g2_ca.cer",
    "Entrust Root Certification Authority - G4": "http://web.entrust.com/root-certificates/entrust_g4_ca.cer",
    "Entrust.net Certification Authority (2048)": "http://web.entrust.com/root-certificates/entrust_2048_ca.cer",
    # Baltimore CyberTrust (now DigiCert)
    "Baltimore CyberTrust Root": "http://cacerts.digicert.com/BaltimoreCyberTrustRoot.crt",
    # Amazon Trust Services
    "Amazon Root CA 1": "https://www.amazontrust.com/repository/AmazonRootCA1.cer",
    "Amazon Root CA 2": "https://www.amazontrust.com/repository/AmazonRootCA2.cer",
    "Amazon Root CA 3": "https://www.amazontrust.com/repository/AmazonRootCA3.cer",
    "Amazon Root CA 4": "https://www.amazontrust.com/repository/AmazonRootCA4.cer",
    "Starfield Services Root Certificate Authority - G2": "https://www.amazontrust.com/repository/SFSRootCAG2.cer",
    # Microsoft
    "Microsoft RSA Root Certificate Authority 2017": "https://www.microsoft.com/pki/mscorp/cps/MicRooCerAut2011_2011_03_22.crt",
    "Microsoft ECC Root Certificate Authority 2017": "https://www.microsoft.com/pkiops/certs/MicRooCerAut2011_2011_03_22.crt",
    # Google Trust Services
    "GTS Root R1": "https://pki.goog/repo/certs/gtsr1.der",
    "GTS Root R2": "https://pki.goog/repo/certs/gtsr2.der",
    "GTS Root R3": "https://pki.goog/repo/certs/gtsr3.der",
    "GTS Root R4": "https://pki.goog/repo/certs/gtsr4.der",
    # Certum
    "Certum Trusted Network CA": "http://www.certum.pl/certum_trusted_network_ca.cer",
    "Certum Trusted Network CA 2": "http://www.certum.pl/certum_trusted_network_ca_2.cer",
    # SwissSign
    "SwissSign Gold CA - G2": "http://www.swisssign.com/download/SwissSign_Gold_CA_-_G2.crt",
    "SwissSign Silver CA - G2": "http://www.swisssign.com/download/SwissSign_Silver_CA_-_G2.crt",
    # QuoVadis
    "QuoVadis Root CA 2": "http://trust.quovadisglobal.com/qvrca2.crt",
    "QuoVadis Root CA 3": "http://trust.quovadisglobal.com/qvrca3.crt",
    "QuoVadis Root CA 2 G3": "http://trust.quovadisglobal.com/qvrca2g3.crt",
    "QuoVadis Root CA 3 G3": "http://trust.quovadisglobal.com/qvrca3g3.crt",
})


def find_root_urls(common_name: str, table: Mapping[str, str] = KNOWN_ROOT_URLS) -> List[Tuple[str, str]]:
    """Candidate (name, url) pairs for *common_name*.

    The exact match comes first, followed by every entry whose name contains
    *common_name* or is contained in it, in table order.
    """
    if not common_name:
        return []
    candidates = []
    if common_name in table:
        candidates.append((common_name, table[common_name]))
    for name, url in table.items():
        if name == common_name:
            continue
        if common_name in name or name in common_name:
            candidates.append((name, url))
    return candidates


def download_root(
    common_name: str,
    fetch: Callable[[str], FetchResponse] = http_get,
    table: Mapping[str, str] = KNOWN_ROOT_URLS,
) -> str:
    """Download the root certificate known for *common_name* as PEM.

    Each candidate URL is tried in turn until one yields a certificate.

    Raises
    ------
    NetworkError
        If no candidate exists or every download failed; the message holds
        the last failure.
    """
    candidates = find_root_urls(common_name, table)
    if not candidates:
        raise NetworkError(f"No known root certificate URL for {common_name!r}", code="ENOTFOUND")

    last_error = None
    for name, url in candidates:
        logger.info("Trying known root certificate URL for %s: %s", name, url)
        try:
            return response_to_pem(fetch(url), url)
        except CertToolError as e:
            logger.info("Failed to fetch root from %s: %s", url, e)
            last_error = e
    raise NetworkError(
        f"All known root URLs for {common_name!r} failed: {last_error}",
        code=getattr(last_error, "code", None),
    ) from last_error


def download_and_store(common_name, output_file):
    pem_data = download_root(common_name)
    # Write or append to the file
    mode = "a" if os.path.exists(output_file) else "w"
    with open(output_file, mode) as f:
        f.write(pem_data)
        f.write("\n")
    print(f"Downloading: {common_name} → Saved to {output_file}")


def main():
    parser = argparse.ArgumentParser(description="Download well-known root CA certificates by common name.")
    parser.add_argument("output", nargs="?", help="PEM file to append to")
    parser.add_argument("names", nargs="*", help="Root CA common names (e.g. 'ISRG Root X1')")
    parser.add_argument("--list", action="store_true", help="List the known root CA names and exit")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    if args.list:
        for name, url in KNOWN_ROOT_URLS.items():
            print(f"{name}: {url}")
        return

    if not args.output or not args.names:
        parser.error("an output file and at least one root CA name are required")

    failed = 0
    for name in args.names:
        try:
            download_and_store(name, args.output)
        except CertToolError as e:
            print(f"Error: {e}", file=sys.stderr)
            failed += 1
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
