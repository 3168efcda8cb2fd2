"""Vulnerability, advisory and data-source records with their stored JSON forms."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any

SourceID = str
Ecosystem = str


class Severity(IntEnum):
    """Severity of a vulnerability, ordered from unknown to critical."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return self.name


SEVERITY_NAMES = [severity.name for severity in Severity]


def new_severity(severity: str) -> Severity:
    """Return the severity with the given upper-case name."""
    try:
        return Severity[severity]
    except KeyError:
        raise ValueError(f"unknown severity: {severity}") from None


def _severity_or_unknown(name: str) -> Severity:
    try:
        return new_severity(name)
    except ValueError:
        return Severity.UNKNOWN


def compare_severity_string(sev1: str, sev2: str) -> int:
    """Positive when sev2 is more severe than sev1; unknown names count as UNKNOWN."""
    return int(_severity_or_unknown(sev2)) - int(_severity_or_unknown(sev1))


# VEX has not_affected, affected, fixed and under_investigation; Red Hat adds
# will_not_fix and fix_deferred.
STATUSES = [
    "unknown",
    "not_affected",
    "affected",
    "fixed",
    "under_investigation",
    "will_not_fix",
    "fix_deferred",
    "end_of_life",
]


class Status(IntEnum):
    """Fix status of an advisory."""

    UNKNOWN = 0
    NOT_AFFECTED = 1
    AFFECTED = 2
    FIXED = 3
    UNDER_INVESTIGATION = 4
    WILL_NOT_FIX = 5
    FIX_DEFERRED = 6
    END_OF_LIFE = 7

    def __str__(self) -> str:
        return STATUSES[self.value]

    @classmethod
    def from_index(cls, index: int) -> Status:
        """Return the status for a stored integer, UNKNOWN when out of range."""
        try:
            return cls(index)
        except ValueError:
            return cls.UNKNOWN


def new_status(status: str) -> Status:
    """Return the status with the given name, UNKNOWN when it is not known."""
    if status in STATUSES:
        return Status(STATUSES.index(status))
    return Status.UNKNOWN


_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})\Z"
)


def parse_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    match = _RFC3339.match(value)
    if match is None:
        raise ValueError(f"invalid RFC 3339 time: {value!r}")
    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    fraction = match.group(7) or ""
    microsecond = int((fraction + "000000")[:6])
    zone = match.group(8)
    if zone in ("Z", "z"):
        tzinfo = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tzinfo = timezone.utc if not offset else timezone(sign * offset)
    return datetime(year, month, day, hour, minute, second, microsecond, tzinfo=tzinfo)


def format_time(value: datetime) -> str:
    """Format a datetime as RFC 3339; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if not offset:
        return text + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop empty values, as the stored format omits them."""
    return {key: value for key, value in data.items() if value}


def _optional_time(value: str | None) -> datetime | None:
    return parse_time(value) if value else None


@dataclass
class CVSS:
    v2_vector: str = ""
    v3_vector: str = ""
    v2_score: float = 0.0
    v3_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "V2Vector": self.v2_vector,
                "V3Vector": self.v3_vector,
                "V2Score": self.v2_score,
                "V3Score": self.v3_score,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CVSS:
        return cls(
            v2_vector=data.get("V2Vector") or "",
            v3_vector=data.get("V3Vector") or "",
            v2_score=float(data.get("V2Score") or 0.0),
            v3_score=float(data.get("V3Score") or 0.0),
        )


@dataclass
class CVSSVector:
    v2: str = ""
    v3: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _compact({"v2": self.v2, "v3": self.v3})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CVSSVector:
        return cls(v2=data.get("v2") or "", v3=data.get("v3") or "")


@dataclass
class DataSource:
    """Where advisories come from, such as a distribution's security tracker."""

    id: SourceID = ""
    name: str = ""
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _compact({"ID": self.id, "Name": self.name, "URL": self.url})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataSource:
        return cls(
            id=data.get("ID") or "",
            name=data.get("Name") or "",
            url=data.get("URL") or "",
        )


@dataclass
class Advisory:
    """A package advisory; the status is stored as an integer to save space."""

    vulnerability_id: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    arches: list[str] = field(default_factory=list)
    status: Status = Status.UNKNOWN
    severity: Severity = Severity.UNKNOWN
    fixed_version: str = ""
    affected_version: str = ""
    vulnerable_versions: list[str] = field(default_factory=list)
    patched_versions: list[str] = field(default_factory=list)
    unaffected_versions: list[str] = field(default_factory=list)
    data_source: DataSource | None = None
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = _compact(
            {
                "VulnerabilityID": self.vulnerability_id,
                "VendorIDs": list(self.vendor_ids),
                "Arches": list(self.arches),
                "Severity": int(self.severity),
                "FixedVersion": self.fixed_version,
                "AffectedVersion": self.affected_version,
                "VulnerableVersions": list(self.vulnerable_versions),
                "PatchedVersions": list(self.patched_versions),
                "UnaffectedVersions": list(self.unaffected_versions),
            }
        )
        if self.data_source is not None:
            data["DataSource"] = self.data_source.to_dict()
        if self.custom is not None:
            data["Custom"] = self.custom
        if self.status:
            data["Status"] = int(self.status)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Advisory:
        source = data.get("DataSource")
        return cls(
            vulnerability_id=data.get("VulnerabilityID") or "",
            vendor_ids=list(data.get("VendorIDs") or []),
            arches=list(data.get("Arches") or []),
            status=Status.from_index(int(data.get("Status") or 0)),
            severity=Severity(int(data.get("Severity") or 0)),
            fixed_version=data.get("FixedVersion") or "",
            affected_version=data.get("AffectedVersion") or "",
            vulnerable_versions=list(data.get("VulnerableVersions") or []),
            patched_versions=list(data.get("PatchedVersions") or []),
            unaffected_versions=list(data.get("UnaffectedVersions") or []),
            data_source=DataSource.from_dict(source) if source is not None else None,
            custom=data.get("Custom"),
        )


@dataclass
class Advisories:
    """Fixed versions per arch or vendor ID for one vulnerability."""

    fixed_version: str = ""
    entries: list[Advisory] = field(default_factory=list)
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = _compact(
            {
                "FixedVersion": self.fixed_version,
                "Entries": [entry.to_dict() for entry in self.entries],
            }
        )
        if self.custom is not None:
            data["Custom"] = self.custom
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Advisories:
        return cls(
            fixed_version=data.get("FixedVersion") or "",
            entries=[Advisory.from_dict(entry) for entry in data.get("Entries") or []],
            custom=data.get("Custom"),
        )


@dataclass
class VulnerabilityDetail:
    """Vulnerability details as reported by one source."""

    id: str = ""
    cvss_score: float = 0.0
    cvss_vector: str = ""
    cvss_score_v3: float = 0.0
    cvss_vector_v3: str = ""
    severity: Severity = Severity.UNKNOWN
    severity_v3: Severity = Severity.UNKNOWN
    cwe_ids: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    published_date: datetime | None = None
    last_modified_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "ID": self.id,
                "CvssScore": self.cvss_score,
                "CvssVector": self.cvss_vector,
                "CvssScoreV3": self.cvss_score_v3,
                "CvssVectorV3": self.cvss_vector_v3,
                "Severity": int(self.severity),
                "SeverityV3": int(self.severity_v3),
                "CweIDs": list(self.cwe_ids),
                "References": list(self.references),
                "Title": self.title,
                "Description": self.description,
                "PublishedDate": format_time(self.published_date) if self.published_date else None,
                "LastModifiedDate": (
                    format_time(self.last_modified_date) if self.last_modified_date else None
                ),
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VulnerabilityDetail:
        return cls(
            id=data.get("ID") or "",
            cvss_score=float(data.get("CvssScore") or 0.0),
            cvss_vector=data.get("CvssVector") or "",
            cvss_score_v3=float(data.get("CvssScoreV3") or 0.0),
            cvss_vector_v3=data.get("CvssVectorV3") or "",
            severity=Severity(int(data.get("Severity") or 0)),
            severity_v3=Severity(int(data.get("SeverityV3") or 0)),
            cwe_ids=list(data.get("CweIDs") or []),
            references=list(data.get("References") or []),
            title=data.get("Title") or "",
            description=data.get("Description") or "",
            published_date=_optional_time(data.get("PublishedDate")),
            last_modified_date=_optional_time(data.get("LastModifiedDate")),
        )


@dataclass
class Vulnerability:
    """A vulnerability merged from all sources."""

    title: str = ""
    description: str = ""
    severity: str = ""
    cwe_ids: list[str] = field(default_factory=list)
    vendor_severity: dict[SourceID, Severity] = field(default_factory=dict)
    cvss: dict[SourceID, CVSS] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    published_date: datetime | None = None
    last_modified_date: datetime | None = None
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = _compact(
            {
                "Title": self.title,
                "Description": self.description,
                "Severity": self.severity,
                "CweIDs": list(self.cwe_ids),
                "VendorSeverity": {
                    source: int(self.vendor_severity[source]) for source in sorted(self.vendor_severity)
                },
                "CVSS": {source: self.cvss[source].to_dict() for source in sorted(self.cvss)},
                "References": list(self.references),
                "PublishedDate": format_time(self.published_date) if self.published_date else None,
                "LastModifiedDate": (
                    format_time(self.last_modified_date) if self.last_modified_date else None
                ),
            }
        )
        if self.custom is not None:
            data["Custom"] = self.custom
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Vulnerability:
        return cls(
            title=data.get("Title") or "",
            description=data.get("Description") or "",
            severity=data.get("Severity") or "",
            cwe_ids=list(data.get("CweIDs") or []),
            vendor_severity={
                source: Severity(int(value))
                for source, value in (data.get("VendorSeverity") or {}).items()
            },
            cvss={
                source: CVSS.from_dict(value) for source, value in (data.get("CVSS") or {}).items()
            },
            references=list(data.get("References") or []),
            published_date=_optional_time(data.get("PublishedDate")),
            last_modified_date=_optional_time(data.get("LastModifiedDate")),
            custom=data.get("Custom"),
        )


@dataclass
class AdvisoryDetail:
    platform_name: str = ""
    package_name: str = ""
    advisory_item: Any = None


@dataclass
class LastUpdated:
    date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"Date": format_time(self.date or datetime(1, 1, 1, tzinfo=timezone.utc))}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LastUpdated:
        return cls(date=_optional_time(data.get("Date")))