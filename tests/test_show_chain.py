from cert_model import parse_chain
from show_chain import describe
from verify_chain import classify_chain


def test_describe_leaf(pki):
    chain = parse_chain(pki.leaf_pem + pki.intermediate_pem + pki.root_pem)
    leaf = chain[0]
    text = describe(leaf, classify_chain(chain)[0])

    assert text.startswith("Leaf certificate: www.example.test")
    assert "Key     : RSA 2048 bit" in text
    assert "DNS:www.example.test" in text
    assert "Basic   : CA=FALSE" in text
    assert f"AIA     : {leaf.authority_info_access_url}" in text
    assert f'pin-sha256="{leaf.spki_pin_sha256}"' in text


def test_describe_root(pki):
    root = parse_chain(pki.root_pem)
    text = describe(root[0], classify_chain(root)[0])

    assert text.startswith("Root certificate: Test Root CA")
    assert "Basic   : CA=TRUE, pathlen=0" in text
    assert "AIA" not in text
