import pytest

from cert_errors import NetworkError
from cert_lib import FetchResponse
from conftest import FakeFetcher, der_response
from download_root import KNOWN_ROOT_URLS, download_and_store, download_root, find_root_urls

TABLE = {
    "Example Root CA": "http://roots.example.test/root.crt",
    "Example Root CA - G2": "http://roots.example.test/root-g2.crt",
    "Other Root": "http://other.example.test/root.crt",
}


def test_known_table_is_read_only():
    assert KNOWN_ROOT_URLS["ISRG Root X1"] == "https://letsencrypt.org/certs/isrgrootx1.der"
    with pytest.raises(TypeError):
        KNOWN_ROOT_URLS["Mine"] = "http://example.test"


def test_exact_match_comes_first():
    candidates = find_root_urls("Example Root CA", TABLE)

    assert candidates[0] == ("Example Root CA", "http://roots.example.test/root.crt")
    assert [name for name, _ in candidates] == ["Example Root CA", "Example Root CA - G2"]


def test_table_name_contained_in_query():
    assert find_root_urls("Example Root CA - G2 (legacy)", TABLE) == [
        ("Example Root CA", "http://roots.example.test/root.crt"),
        ("Example Root CA - G2", "http://roots.example.test/root-g2.crt"),
    ]


def test_no_candidates():
    assert find_root_urls("Nobody", TABLE) == []
    assert find_root_urls("", TABLE) == []


def test_download_root_returns_pem(pki):
    fetch = FakeFetcher({"http://roots.example.test/root.crt": der_response(pki.root)})
    assert download_root("Example Root CA", fetch=fetch, table=TABLE) == pki.root_pem.strip()


def test_download_root_tries_next_candidate(pki):
    fetch = FakeFetcher({
        "http://roots.example.test/root.crt": FetchResponse(b"<html></html>", "text/html"),
        "http://roots.example.test/root-g2.crt": der_response(pki.root),
    })
    assert download_root("Example Root CA", fetch=fetch, table=TABLE) == pki.root_pem.strip()
    assert len(fetch.calls) == 2


def test_download_root_unknown_name():
    with pytest.raises(NetworkError) as excinfo:
        download_root("Nobody", fetch=FakeFetcher(), table=TABLE)
    assert excinfo.value.code == "ENOTFOUND"


def test_download_root_all_candidates_fail():
    with pytest.raises(NetworkError) as excinfo:
        download_root("Other Root", fetch=FakeFetcher(), table=TABLE)
    assert excinfo.value.code == "ECONNREFUSED"
    assert "Other Root" in str(excinfo.value)


def test_download_and_store_appends(pki, tmp_path, monkeypatch):
    monkeypatch.setattr("download_root.download_root", lambda name: pki.root_pem.strip())
    output = tmp_path / "roots.pem"

    download_and_store("Example Root CA", str(output))
    download_and_store("Example Root CA", str(output))

    assert output.read_text().count("BEGIN CERTIFICATE") == 2
