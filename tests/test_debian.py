import json

import pytest

from advisorydb import db
from advisorydb.db import Config
from advisorydb.debian import Advisory, VulnSrc, compare_versions, default_put
from advisorydb.types import Severity, Status

CVE_33560 = "CVE-2021-33560"
CVE_29629 = "CVE-2021-29629"
CVE_8631 = "CVE-2020-8631"
CVE_4606 = "CVE-2016-4606"
DSA_3714 = "DSA-3714-1"
ALL_IDS = [CVE_33560, CVE_29629, CVE_8631, CVE_4606, DSA_3714]


def _write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content)
    else:
        path.write_text(json.dumps(content))


def _source(tracker, directory, code, name, pkg, version):
    _write(tracker / directory / code / f"{name}.json", {"Package": [pkg], "Version": [version]})


def _ann(release, package, kind, version="", severity=""):
    return {
        "Type": "package",
        "Release": release,
        "Package": package,
        "Kind": kind,
        "Version": version,
        "Severity": severity,
    }


def _happy_tree(root):
    tracker = root / "vuln-list-debian" / "tracker"
    _write(
        tracker / "distributions.json",
        {
            "jessie": {"major-version": "8"},
            "stretch": {"major-version": "9"},
            "buster": {"major-version": "10"},
            "bullseye": {"major-version": "11"},
            "sid": {"major-version": ""},
        },
    )
    _source(tracker, "source", "bullseye", "libgcrypt20", "libgcrypt20", "1.8.7-6")
    _source(tracker, "source", "buster", "dacs", "dacs", "1.4.38a-2")
    _source(tracker, "source", "bullseye", "cloud-init-a", "cloud-init", "20.2-2")
    _source(tracker, "updates-source", "bullseye", "cloud-init-b", "cloud-init", "20.4.1-2")

    _write(
        tracker / "CVE" / f"{CVE_33560}.json",
        {
            "Header": {"ID": CVE_33560, "Description": "(Libgcrypt mishandles ElGamal encry ...)"},
            "Annotations": [
                _ann("", "libgcrypt20", "fixed", "1.8.7-6", "medium"),
                _ann("buster", "libgcrypt20", "fixed", "1.8.4-5+deb10u1"),
                _ann("stretch", "libgcrypt20", "no-dsa"),
            ],
        },
    )
    _write(
        tracker / "CVE" / f"{CVE_29629}.json",
        {
            "Header": {"ID": CVE_29629, "Description": "(In FreeBSD 13.0-STABLE ...)"},
            "Annotations": [
                _ann("", "dacs", "unfixed", "", "low"),
                _ann("buster", "dacs", "ignored"),
                _ann("stretch", "dacs", "not-affected"),
            ],
        },
    )
    _write(
        tracker / "CVE" / f"{CVE_8631}.json",
        {
            "Header": {"ID": CVE_8631, "Description": "(cloud-init uses a weak generator)"},
            "Annotations": [
                _ann("", "cloud-init", "fixed", "19.4-2"),
                _ann("bullseye", "cloud-init", "no-dsa"),
            ],
        },
    )
    _write(
        tracker / "CVE" / f"{CVE_4606}.json",
        {
            "Header": {"ID": CVE_4606, "Description": "(curl issue)"},
            "Annotations": [_ann("", "curl", "not-affected")],
        },
    )
    _write(
        tracker / "DLA" / "DLA-2691-1.json",
        {
            "Header": {"ID": "DLA-2691-1", "Description": "libgcrypt20 - security update"},
            "Annotations": [
                {"Type": "xref", "Bugs": [CVE_33560]},
                _ann("stretch", "libgcrypt20", "fixed", "1.7.6-2+deb9u4"),
            ],
        },
    )
    _write(
        tracker / "DSA" / f"{DSA_3714}.json",
        {
            "Header": {"ID": DSA_3714, "Description": "akonadi - update"},
            "Annotations": [_ann("jessie", "akonadi", "fixed", "1.13.0-2+deb8u2")],
        },
    )
    return tracker


@pytest.fixture
def dbc(tmp_path):
    db.init(str(tmp_path / "cache"))
    yield Config()
    db.close()


def _copy_to_platforms(dbc):
    def save(tx):
        for vuln_id in ALL_IDS:
            dbc.save_advisory_details(tx, vuln_id)

    dbc.batch_update(save)


@pytest.fixture
def loaded(dbc, tmp_path):
    data_dir = tmp_path / "data"
    _happy_tree(data_dir)
    vs = VulnSrc(dbc)
    vs.update(str(data_dir))
    _copy_to_platforms(dbc)
    return vs


def _only(advisories, vuln_id):
    matching = [adv for adv in advisories if adv.vulnerability_id == vuln_id]
    assert len(matching) == 1
    return matching[0]


def test_name():
    assert VulnSrc().name() == "debian"


def test_update_fixed_by_dla(loaded):
    adv = _only(loaded.get("9", "libgcrypt20"), CVE_33560)
    assert adv.fixed_version == "1.7.6-2+deb9u4"
    assert adv.vendor_ids == ["DLA-2691-1"]
    assert adv.status == Status.UNKNOWN


def test_update_fixed_in_release(loaded):
    adv = _only(loaded.get("10", "libgcrypt20"), CVE_33560)
    assert adv.fixed_version == "1.8.4-5+deb10u1"
    assert adv.vendor_ids == []


def test_update_fixed_via_sid(loaded):
    adv = _only(loaded.get("11", "libgcrypt20"), CVE_33560)
    assert adv.fixed_version == "1.8.7-6"
    assert adv.severity == Severity.MEDIUM


def test_update_will_not_fix(loaded):
    adv = _only(loaded.get("10", "dacs"), CVE_29629)
    assert adv.severity == Severity.LOW
    assert adv.status == Status.WILL_NOT_FIX
    assert adv.fixed_version == ""


def test_update_not_affected_in_release(loaded):
    assert not loaded.get("9", "dacs")


def test_update_advisory_without_cve(loaded):
    adv = _only(loaded.get("8", "akonadi"), DSA_3714)
    assert adv.fixed_version == "1.13.0-2+deb8u2"
    assert adv.vendor_ids == [DSA_3714]


def test_update_wrong_no_dsa(loaded):
    adv = _only(loaded.get("11", "cloud-init"), CVE_8631)
    assert adv.fixed_version == "19.4-2"
    assert adv.status == Status.UNKNOWN


def test_update_data_source(loaded):
    adv = _only(loaded.get("9", "libgcrypt20"), CVE_33560)
    assert adv.data_source.id == "debian"
    assert adv.data_source.name == "Debian Security Tracker"
    assert adv.data_source.url == "https://salsa.debian.org/security-tracker-team/security-tracker"


@pytest.mark.parametrize(
    ("vuln_id", "title"),
    [
        (CVE_33560, "Libgcrypt mishandles ElGamal encry ..."),
        (CVE_29629, "In FreeBSD 13.0-STABLE ..."),
        (DSA_3714, "akonadi - update"),
    ],
)
def test_update_vulnerability_detail(loaded, dbc, vuln_id, title):
    details = dbc.get_vulnerability_detail(vuln_id)
    assert details["debian"].title == title


def test_update_not_affected_in_sid(loaded, dbc):
    assert not dbc.get_vulnerability_detail(CVE_4606)


def test_update_broken_distributions(dbc, tmp_path):
    tracker = tmp_path / "vuln-list-debian" / "tracker"
    _write(tracker / "distributions.json", "{broken")
    with pytest.raises(ValueError, match="failed to decode Debian distribution JSON"):
        VulnSrc(dbc).update(str(tmp_path))


def test_update_broken_packages(dbc, tmp_path):
    tracker = tmp_path / "vuln-list-debian" / "tracker"
    _write(tracker / "distributions.json", {"buster": {"major-version": "10"}})
    _write(tracker / "source" / "buster" / "broken.json", "{")
    with pytest.raises(ValueError, match="failed to decode .*broken.json"):
        VulnSrc(dbc).update(str(tmp_path))


def test_update_broken_cve(dbc, tmp_path):
    tracker = tmp_path / "vuln-list-debian" / "tracker"
    _write(tracker / "distributions.json", {"buster": {"major-version": "10"}})
    _write(tracker / "CVE" / "CVE-2021-0001.json", "[1, 2")
    with pytest.raises(ValueError, match="json decode error"):
        VulnSrc(dbc).update(str(tmp_path))


def test_custom_put(dbc, tmp_path):
    _happy_tree(tmp_path)
    seen = []
    VulnSrc(dbc, put=lambda _dbc, _tx, adv: seen.append(adv)).update(str(tmp_path))
    keys = {(adv.platform, adv.pkg_name, adv.vulnerability_id) for adv in seen}
    assert ("debian 8", "akonadi", DSA_3714) in keys
    assert ("debian 9", "libgcrypt20", CVE_33560) in keys
    assert not any(adv.vulnerability_id == CVE_4606 for adv in seen)
    akonadi = next(adv for adv in seen if adv.pkg_name == "akonadi")
    assert akonadi.title == "akonadi - update"


def test_default_put_rejects_unknown_type(dbc):
    with pytest.raises(TypeError, match="unknown type"):
        dbc.batch_update(lambda tx: default_put(dbc, tx, {"FixedVersion": "1.0"}))


def test_default_put_stores_advisory(dbc):
    adv = Advisory(
        vulnerability_id="CVE-2021-38370",
        platform="debian 10",
        pkg_name="alpine",
        state="no-dsa",
        severity="high",
    )
    dbc.batch_update(lambda tx: default_put(dbc, tx, adv))
    dbc.batch_update(lambda tx: dbc.save_advisory_details(tx, "CVE-2021-38370"))
    got = _only(VulnSrc(dbc).get("10", "alpine"), "CVE-2021-38370")
    assert got.status == Status.AFFECTED
    assert got.severity == Severity.HIGH


@pytest.mark.parametrize(
    ("v1", "v2", "want"),
    [
        ("", "", 0),
        ("", "1.0", -1),
        ("1.0", "", 1),
        ("1.0-1", "1.0-2", -1),
        ("5.0-4", "5.0-2", 1),
        ("1:0.1", "2.0", 1),
        ("1.0~rc1", "1.0", -1),
        ("1.8.4-5+deb10u1", "1.8.4-5", 1),
        ("2.02-3.1", "2.02-3.1", 0),
        ("1.01", "1.1", 0),
    ],
)
def test_compare_versions(v1, v2, want):
    assert compare_versions(v1, v2) == want


def test_compare_versions_invalid():
    with pytest.raises(ValueError):
        compare_versions("abc", "1.0")