import json

import pytest

from advisorydb import db
from advisorydb.amazon import VulnSrc
from advisorydb.db import Config, DBError
from advisorydb.types import Advisory, DataSource, VulnerabilityDetail

SOURCE = DataSource(
    id="amazon",
    name="Amazon Linux Security Center",
    url="https://alas.aws.amazon.com/",
)


@pytest.fixture
def cache_dir(tmp_path):
    directory = tmp_path / "cache"
    db.init(directory)
    yield directory
    db.close()


def _lookup(keys):
    store = Config().connection()
    with store.view() as tx:
        bkt = tx.bucket(keys[0])
        for name in keys[1:-1]:
            if bkt is None:
                break
            bkt = bkt.bucket(name)
        raw = None if bkt is None else bkt.get(keys[-1])
    return None if raw is None else json.loads(raw)


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")


DESC1 = "Package updates are available for Amazon Linux AMI.\nCVE-2018-17456: git clone"
DESC2 = "Package updates are available for Amazon Linux 2.\nCVE-2021-22543: KVM"


@pytest.fixture
def happy_dir(tmp_path):
    root = tmp_path / "src" / "vuln-list" / "amazon"
    _write(
        root / "1" / "ALAS-2018-1092.json",
        {
            "id": "ALAS-2018-1092",
            "severity": "important",
            "description": DESC1,
            "packages": [
                {"name": "git", "epoch": "0", "version": "2.14.5",
                 "release": "1.59.amzn1", "arch": "x86_64"},
                {"name": "git-debuginfo", "epoch": "1", "version": "2.14.5",
                 "release": "1.59.amzn1", "arch": "x86_64"},
            ],
            "references": [
                {"href": "http://cve.mitre.org/cgi-bin/cvename.cgi?name=CVE-2018-17456"}
            ],
            "cveids": ["CVE-2018-17456"],
        },
    )
    _write(
        root / "2" / "ALAS2-2021-1699.json",
        {
            "id": "ALAS2-2021-1699",
            "severity": "low",
            "description": DESC2,
            "packages": [
                {"name": "kernel", "epoch": "0", "version": "4.14.243",
                 "release": "185.433.amzn2", "arch": "x86_64"},
                {"name": "kernel-headers", "epoch": "0", "version": "4.14.243",
                 "release": "185.433.amzn2", "arch": "x86_64"},
            ],
            "references": [
                {"href": "http://cve.mitre.org/cgi-bin/cvename.cgi?name=CVE-2021-22543"}
            ],
            "cveids": ["CVE-2021-22543"],
        },
    )
    _write(
        root / "2022" / "ALAS2022-2021-001.json",
        {
            "id": "ALAS2022-2021-001",
            "severity": "critical",
            "packages": [
                {"name": "log4j", "epoch": "0", "version": "2.15.0",
                 "release": "1.amzn2022.0.1", "arch": "noarch"},
            ],
            "cveids": ["CVE-2021-44228"],
        },
    )
    _write(
        root / "3" / "ALAS3-2021-001.json",
        {"id": "x", "packages": [{"name": "curl", "version": "1"}], "cveids": ["CVE-2099-0001"]},
    )
    return tmp_path / "src"


def test_update_happy_path(cache_dir, happy_dir):
    VulnSrc().update(happy_dir)

    assert _lookup(["data-source", "amazon linux 1"]) == SOURCE.to_dict()
    assert _lookup(["data-source", "amazon linux 2022"]) == SOURCE.to_dict()
    assert _lookup(["advisory-detail", "CVE-2018-17456", "amazon linux 1", "git"]) == Advisory(
        fixed_version="2.14.5-1.59.amzn1"
    ).to_dict()
    assert _lookup(
        ["advisory-detail", "CVE-2018-17456", "amazon linux 1", "git-debuginfo"]
    ) == Advisory(fixed_version="1:2.14.5-1.59.amzn1").to_dict()
    for pkg in ("kernel", "kernel-headers"):
        assert _lookup(
            ["advisory-detail", "CVE-2021-22543", "amazon linux 2", pkg]
        ) == Advisory(fixed_version="4.14.243-185.433.amzn2").to_dict()
    assert _lookup(
        ["advisory-detail", "CVE-2021-44228", "amazon linux 2022", "log4j"]
    ) == Advisory(fixed_version="2.15.0-1.amzn2022.0.1").to_dict()
    assert _lookup(["vulnerability-detail", "CVE-2018-17456", "amazon"]) == VulnerabilityDetail(
        severity=3,
        description=DESC1,
        references=["http://cve.mitre.org/cgi-bin/cvename.cgi?name=CVE-2018-17456"],
    ).to_dict()
    assert _lookup(["vulnerability-detail", "CVE-2021-22543", "amazon"]) == VulnerabilityDetail(
        severity=1,
        description=DESC2,
        references=["http://cve.mitre.org/cgi-bin/cvename.cgi?name=CVE-2021-22543"],
    ).to_dict()
    assert _lookup(["vulnerability-id", "CVE-2018-17456"]) == {}


def test_update_skips_unsupported_versions(cache_dir, happy_dir):
    VulnSrc().update(happy_dir)
    assert _lookup(["data-source", "amazon linux 3"]) is None
    assert _lookup(["vulnerability-id", "CVE-2099-0001"]) is None


def test_update_sad_path(cache_dir, tmp_path):
    _write(tmp_path / "src" / "vuln-list" / "amazon" / "2" / "broken.json", "{broken")
    with pytest.raises(ValueError, match="failed to decode Amazon JSON"):
        VulnSrc().update(tmp_path / "src")


def test_update_no_such_directory(cache_dir, tmp_path):
    with pytest.raises(FileNotFoundError, match="no such file or directory"):
        VulnSrc().update(tmp_path / "nosuch")


def _put_raw(keys, value):
    def fill(tx):
        bkt = tx.create_bucket_if_not_exists(keys[0])
        for name in keys[1:-1]:
            bkt = bkt.create_bucket_if_not_exists(name)
        bkt.put(keys[-1], value)

    Config().batch_update(fill)


def test_get_happy_path(cache_dir):
    _put_raw(["amazon linux 1", "curl", "CVE-2019-0001"], b'{"FixedVersion":"0.1.2"}')
    got = VulnSrc().get("1", "curl")
    assert got == [Advisory(vulnerability_id="CVE-2019-0001", fixed_version="0.1.2")]


def test_get_no_advisories(cache_dir):
    _put_raw(["amazon linux 1", "curl", "CVE-2019-0001"], b'{"FixedVersion":"0.1.2"}')
    assert VulnSrc().get("2", "curl") == []


def test_get_broken_value(cache_dir):
    _put_raw(["amazon linux 1", "curl", "CVE-2019-0001"], b"[broken")
    with pytest.raises(DBError, match="failed to unmarshal advisory JSON"):
        VulnSrc().get("1", "curl")