import json
from datetime import datetime, timezone

import pytest

from advisorydb.types import (
    CVSS,
    STATUSES,
    Advisories,
    Advisory,
    DataSource,
    Severity,
    Status,
    Vulnerability,
    VulnerabilityDetail,
    compare_severity_string,
    format_time,
    new_severity,
    new_status,
    parse_time,
)


@pytest.mark.parametrize("severity", list(Severity))
def test_new_severity_round_trips_names(severity):
    assert new_severity(str(severity)) is severity


def test_new_severity_unknown_name():
    with pytest.raises(ValueError, match="unknown severity: bogus"):
        new_severity("bogus")


def test_severity_names():
    assert str(new_severity("CRITICAL")) == "CRITICAL"
    assert new_severity("UNKNOWN") is Severity.UNKNOWN
    assert new_severity("MEDIUM") is Severity.MEDIUM


def test_compare_severity_string():
    assert compare_severity_string("LOW", "CRITICAL") > 0
    assert compare_severity_string("CRITICAL", "LOW") < 0
    assert compare_severity_string("HIGH", "HIGH") == 0
    assert compare_severity_string("bogus", "UNKNOWN") == 0


@pytest.mark.parametrize("name", STATUSES)
def test_new_status_round_trips(name):
    assert str(new_status(name)) == name


def test_new_status_unknown():
    assert new_status("nope") is Status.UNKNOWN
    assert Status.from_index(99) is Status.UNKNOWN


def test_status_strings():
    assert new_status("will_not_fix") is Status.WILL_NOT_FIX
    assert new_status("end_of_life") is Status.END_OF_LIFE
    assert new_status("fix_deferred") is Status.FIX_DEFERRED


def test_advisory_minimal_dict():
    assert Advisory(fixed_version="2.9.3-r0").to_dict() == {"FixedVersion": "2.9.3-r0"}
    assert Advisory().to_dict() == {}


def test_advisory_status_stored_as_int():
    advisory = Advisory(severity=Severity.LOW, status=Status.WILL_NOT_FIX)
    data = advisory.to_dict()
    assert data["Status"] == int(Status.WILL_NOT_FIX)
    assert data["Severity"] == int(Severity.LOW)


def test_advisory_round_trip_through_json():
    advisory = Advisory(
        vulnerability_id="CVE-2019-10909",
        vendor_ids=["DLA-2691-1"],
        status=Status.AFFECTED,
        severity=Severity.HIGH,
        fixed_version="1.7.6-2+deb9u4",
        vulnerable_versions=[">= 4.2.0, < 4.2.7"],
        patched_versions=["4.2.7"],
        data_source=DataSource(id="alpine", name="Alpine Secdb", url="https://secdb.alpinelinux.org/"),
        custom={"extra": [1, 2]},
    )
    restored = Advisory.from_dict(json.loads(json.dumps(advisory.to_dict())))
    assert restored == advisory


def test_advisory_empty_lists_omitted():
    advisory = Advisory(vulnerable_versions=["=5.15.12"], patched_versions=[])
    assert "PatchedVersions" not in advisory.to_dict()


def test_data_source_round_trip():
    source = DataSource(id="alpine", name="Alpine Secdb", url="https://secdb.alpinelinux.org/")
    assert source.to_dict() == {
        "ID": "alpine",
        "Name": "Alpine Secdb",
        "URL": "https://secdb.alpinelinux.org/",
    }
    assert DataSource.from_dict(source.to_dict()) == source
    assert DataSource.from_dict({}) == DataSource()


def test_vulnerability_detail_omits_zero_values():
    detail = VulnerabilityDetail(
        cvss_score_v3=6.1, title="Doorkeeper::OpenidConnect Open Redirect"
    )
    assert detail.to_dict() == {
        "CvssScoreV3": 6.1,
        "Title": "Doorkeeper::OpenidConnect Open Redirect",
    }


def test_vulnerability_detail_round_trip():
    detail = VulnerabilityDetail(
        id="CVE-2015-5723",
        severity=Severity.MEDIUM,
        references=["https://github.com/aws/aws-sdk-php/releases/tag/3.2.1"],
        published_date=datetime(2019, 4, 7, 0, 29, tzinfo=timezone.utc),
    )
    assert VulnerabilityDetail.from_dict(json.loads(json.dumps(detail.to_dict()))) == detail


def test_vulnerability_round_trip_and_dates():
    published = datetime(2019, 4, 7, 0, 29, tzinfo=timezone.utc)
    modified = datetime(2020, 8, 24, 17, 37, tzinfo=timezone.utc)
    vuln = Vulnerability(
        title="python-jinja2: str.format_map allows sandbox escape",
        severity="HIGH",
        vendor_severity={"nvd": Severity.HIGH, "redhat": Severity.CRITICAL},
        cvss={"nvd": CVSS(v3_vector="AV:N", v3_score=7.5)},
        published_date=published,
        last_modified_date=modified,
    )
    data = vuln.to_dict()
    assert data["PublishedDate"] == "2019-04-07T00:29:00Z"
    assert data["VendorSeverity"] == {"nvd": int(Severity.HIGH), "redhat": int(Severity.CRITICAL)}
    assert Vulnerability.from_dict(json.loads(json.dumps(data))) == vuln


def test_advisories_round_trip():
    advisories = Advisories(
        fixed_version="1.0",
        entries=[Advisory(arches=["x86_64"], fixed_version="1.0")],
    )
    assert Advisories.from_dict(advisories.to_dict()) == advisories


@pytest.mark.parametrize(
    "text",
    ["2020-08-24T17:37:00Z", "2020-08-24T17:37:00+09:00", "2021-01-02T03:04:05.5Z"],
)
def test_time_round_trip(text):
    assert format_time(parse_time(text)) == text


def test_parse_time_truncates_nanoseconds():
    assert parse_time("2021-01-02T03:04:05.123456789Z").microsecond == 123456


def test_parse_time_rejects_garbage():
    with pytest.raises(ValueError):
        parse_time("2021-01-02 03:04:05")