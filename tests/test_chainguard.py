import json

import pytest

from advisorydb import db
from advisorydb.chainguard import VulnSrc
from advisorydb.db import DBError
from advisorydb.types import Advisory, DataSource

SOURCE = DataSource(
    id="chainguard",
    name="Chainguard Security Data",
    url="https://packages.cgr.dev/chainguard/security.json",
)


@pytest.fixture
def cache(tmp_path):
    cache_dir = tmp_path / "cache"
    db.init(cache_dir)
    yield cache_dir
    db.close()


def _stored(keys):
    store = db.Config().connection()
    with store.view() as tx:
        bkt = tx.bucket(keys[0])
        for name in keys[1:-1]:
            assert bkt is not None
            bkt = bkt.bucket(name)
        assert bkt is not None
        content = bkt.get(keys[-1])
    return None if content is None else json.loads(content)


def _write(tmp_path, name, content):
    directory = tmp_path / "data" / "vuln-list" / "chainguard"
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(content)
    return tmp_path / "data"


HAPPY = {
    "apkurl": "{{urlprefix}}/{{reponame}}/{{arch}}/{{pkg.name}}-{{pkg.ver}}.apk",
    "archs": ["x86_64"],
    "reponame": "chainguard",
    "urlprefix": "https://packages.cgr.dev",
    "name": "binutils",
    "secfixes": {
        "2.39-r1": ["CVE-2022-38126"],
        "2.39-r2": ["CVE-2022-38533", "GHSA-xxxx-yyyy-zzzz"],
    },
}


def test_name():
    assert VulnSrc().name() == "chainguard"


def test_update_happy_path(tmp_path, cache):
    data = _write(tmp_path, "binutils.json", json.dumps(HAPPY))
    VulnSrc().update(data)

    assert _stored(["data-source", "chainguard"]) == SOURCE.to_dict()
    assert _stored(["advisory-detail", "CVE-2022-38126", "chainguard", "binutils"]) == {
        "FixedVersion": "2.39-r1"
    }
    assert _stored(["advisory-detail", "CVE-2022-38533", "chainguard", "binutils"]) == {
        "FixedVersion": "2.39-r2"
    }
    assert _stored(["vulnerability-id", "CVE-2022-38533"]) == {}
    assert _stored(["vulnerability-id", "GHSA-xxxx-yyyy-zzzz"]) is None


def test_update_sad_path(tmp_path, cache):
    data = _write(tmp_path, "broken.json", "[1,")
    with pytest.raises(ValueError, match="failed to decode Chainguard advisory"):
        VulnSrc().update(data)


def test_get_ignores_release(tmp_path, cache):
    data = _write(tmp_path, "binutils.json", json.dumps(HAPPY))
    vs = VulnSrc()
    vs.update(data)

    got = sorted(vs.get("", "binutils"), key=lambda a: a.vulnerability_id)
    expected = [
        Advisory(vulnerability_id="CVE-2022-38126", fixed_version="2.39-r1", data_source=SOURCE),
        Advisory(vulnerability_id="CVE-2022-38533", fixed_version="2.39-r2", data_source=SOURCE),
    ]
    assert got == expected
    assert sorted(vs.get("anything", "binutils"), key=lambda a: a.vulnerability_id) == expected


def test_get_broken_value(cache):
    store = db.Config().connection()
    with store.update() as tx:
        tx.create_bucket_if_not_exists("chainguard").create_bucket_if_not_exists(
            "binutils"
        ).put("CVE-2022-0001", b"{")
    with pytest.raises(DBError, match="failed to get Chainguard advisories"):
        VulnSrc().get("", "binutils")