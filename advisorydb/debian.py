"""Debian security tracker advisories."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple

from advisorydb.db import Config, DBError, Transaction
from advisorydb.types import Advisory as PackageAdvisory
from advisorydb.types import DataSource, Severity, Status, VulnerabilityDetail
from advisorydb.utils import exists, file_walk

logger = logging.getLogger(__name__)

DEBIAN_DIR = "vuln-list-debian"

PACKAGE_TYPE = "package"
XREF_TYPE = "xref"

DISTRIBUTIONS_FILE = "distributions.json"
SOURCES_DIR = "source"
UPDATE_SOURCES_DIR = "updates-source"
CVE_DIR = "CVE"
DLA_DIR = "DLA"
DSA_DIR = "DSA"

PLATFORM_FORMAT = "debian {}"

# "removed" must not be treated as not affected.
SKIP_STATUSES = ("not-affected", "undetermined")

SOURCE = DataSource(
    id="debian",
    name="Debian Security Tracker",
    url="https://salsa.debian.org/security-tracker-team/security-tracker",
)


@dataclass
class Advisory:
    """An advisory for one package, release and vulnerability, before it is stored."""

    vulnerability_id: str = ""
    platform: str = ""
    pkg_name: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    state: str = ""
    severity: str = ""
    fixed_version: str = ""
    title: str = ""


CustomPut = Callable[[Config, Transaction, Any], None]


class _Key(NamedTuple):
    code_name: str = ""
    pkg_name: str = ""
    vuln_id: str = ""  # CVE-ID, DLA-ID or DSA-ID
    severity: str = ""


@dataclass
class _State:
    # Codename to major version, e.g. "buster" => "10".
    distributions: dict[str, str] = field(default_factory=dict)
    # Short description per vulnerability ID.
    details: dict[str, str] = field(default_factory=dict)
    # Latest version of each package per codename.
    pkg_versions: dict[_Key, str] = field(default_factory=dict)
    # Fixed versions in sid; empty when unfixed.
    sid_fixed_versions: dict[_Key, str] = field(default_factory=dict)
    # Advisories per codename, package and vulnerability.
    bkt_advisories: dict[_Key, Advisory] = field(default_factory=dict)
    # Not-affected combinations; an empty codename means sid.
    not_affected: set[_Key] = field(default_factory=set)


def _field(data: dict[str, Any], name: str) -> Any:
    if name in data:
        return data[name]
    lowered = name.lower()
    for key, value in data.items():
        if key.lower() == lowered:
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    return value


def _strings(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"expected a list, got {type(value).__name__}")
    return [_text(item) for item in value]


def _object(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, got {type(value).__name__}")
    return value


@dataclass
class _Annotation:
    type: str
    release: str
    package: str
    kind: str
    version: str
    severity: str
    bugs: list[str]


@dataclass
class _Bug:
    id: str
    description: str
    annotations: list[_Annotation]

    @classmethod
    def from_json(cls, data: Any) -> _Bug:
        data = _object(data)
        header = _object(_field(data, "Header"))
        raw_annotations = _field(data, "Annotations") or []
        if not isinstance(raw_annotations, list):
            raise ValueError("annotations must be a list")
        annotations = []
        for raw in raw_annotations:
            raw = _object(raw)
            annotations.append(
                _Annotation(
                    type=_text(_field(raw, "Type")),
                    release=_text(_field(raw, "Release")),
                    package=_text(_field(raw, "Package")),
                    kind=_text(_field(raw, "Kind")),
                    version=_text(_field(raw, "Version")),
                    severity=_text(_field(raw, "Severity")),
                    bugs=_strings(_field(raw, "Bugs")),
                )
            )
        return cls(
            id=_text(_field(header, "ID")),
            description=_text(_field(header, "Description")),
            annotations=annotations,
        )


# Debian version comparison

_UPSTREAM_CHARS = re.compile(r"[A-Za-z0-9.+~:\-]+")
_REVISION_CHARS = re.compile(r"[A-Za-z0-9.+~_]+")
_DIGITS = "0123456789"


def _parse_deb_version(value: str) -> tuple[int, str, str]:
    text = value.strip()
    if not text:
        raise ValueError("version string is empty")
    epoch = 0
    if ":" in text:
        epoch_text, text = text.split(":", 1)
        if not epoch_text.isdigit():
            raise ValueError(f"epoch parse error: {value!r}")
        epoch = int(epoch_text)
    upstream, revision = text, ""
    if "-" in text:
        upstream, _, revision = text.rpartition("-")
        if not revision or not _REVISION_CHARS.fullmatch(revision):
            raise ValueError(f"invalid revision in version {value!r}")
    if not upstream:
        raise ValueError(f"upstream version is empty: {value!r}")
    if upstream[0] not in _DIGITS:
        raise ValueError(f"upstream version must start with a digit: {value!r}")
    if not _UPSTREAM_CHARS.fullmatch(upstream):
        raise ValueError(f"invalid upstream version: {value!r}")
    return epoch, upstream, revision


def _order(char: str) -> int:
    if char in _DIGITS:
        return 0
    if char.isascii() and char.isalpha():
        return ord(char)
    if char == "~":
        return -1
    return ord(char) + 256


def _verrevcmp(a: str, b: str) -> int:
    i = j = 0
    while i < len(a) or j < len(b):
        while (i < len(a) and a[i] not in _DIGITS) or (j < len(b) and b[j] not in _DIGITS):
            ac = _order(a[i]) if i < len(a) else 0
            bc = _order(b[j]) if j < len(b) else 0
            if ac != bc:
                return ac - bc
            i += 1
            j += 1
        while i < len(a) and a[i] == "0":
            i += 1
        while j < len(b) and b[j] == "0":
            j += 1
        first_diff = 0
        while i < len(a) and a[i] in _DIGITS and j < len(b) and b[j] in _DIGITS:
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1
            j += 1
        if i < len(a) and a[i] in _DIGITS:
            return 1
        if j < len(b) and b[j] in _DIGITS:
            return -1
        if first_diff:
            return first_diff
    return 0


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def compare_versions(v1: str, v2: str) -> int:
    """Compare two Debian versions, either of which may be empty; returns -1, 0 or 1."""
    if not v1 and not v2:
        return 0
    if not v1:
        return -1
    if not v2:
        return 1
    e1, up1, rev1 = _parse_deb_version(v1)
    e2, up2, rev2 = _parse_deb_version(v2)
    if e1 != e2:
        return _sign(e1 - e2)
    return _sign(_verrevcmp(up1, up2)) or _sign(_verrevcmp(rev1, rev2))


def _has_fixed_version(sid_ver: str, code_ver: str) -> bool:
    """Whether the release already ships the version fixed in sid.

    An empty sid version means the vulnerability is not fixed anywhere; a release
    whose latest version is at least the sid fix is taken as fixed at that version.
    """
    if not sid_ver:
        return False
    try:
        return compare_versions(code_ver, sid_ver) >= 0
    except ValueError as exc:
        raise ValueError(f"version comparison error: {exc}") from exc


_URGENCIES = {
    "unimportant": Severity.LOW,
    "low": Severity.LOW,
    "low*": Severity.LOW,
    "low**": Severity.LOW,
    "medium": Severity.MEDIUM,
    "medium*": Severity.MEDIUM,
    "medium**": Severity.MEDIUM,
    "high": Severity.HIGH,
    "high*": Severity.HIGH,
    "high**": Severity.HIGH,
}


def _severity_from_urgency(urgency: str) -> Severity:
    return _URGENCIES.get(urgency, Severity.UNKNOWN)


_STATES = {
    "no-dsa": Status.AFFECTED,
    "unfixed": Status.AFFECTED,
    "ignored": Status.WILL_NOT_FIX,
    "postponed": Status.FIX_DEFERRED,
    "end-of-life": Status.END_OF_LIFE,
}


def _new_status(state: str) -> Status:
    return _STATES.get(state.lower(), Status.UNKNOWN)


def default_put(dbc: Config, tx: Transaction, advisory: Any) -> None:
    """Store a Debian advisory, its detail, its ID and the data source."""
    if not isinstance(advisory, Advisory):
        raise TypeError("unknown type")

    detail = PackageAdvisory(
        vendor_ids=list(advisory.vendor_ids),
        status=_new_status(advisory.state),
        severity=_severity_from_urgency(advisory.severity),
        fixed_version=advisory.fixed_version,
    )
    try:
        dbc.put_advisory_detail(
            tx, advisory.vulnerability_id, advisory.pkg_name, [advisory.platform], detail
        )
    except DBError as exc:
        raise DBError(f"failed to save Debian advisory: {exc}") from exc

    vuln = VulnerabilityDetail(title=advisory.title)
    try:
        dbc.put_vulnerability_detail(tx, advisory.vulnerability_id, SOURCE.id, vuln)
    except DBError as exc:
        raise DBError(f"failed to save Debian vulnerability detail: {exc}") from exc

    try:
        dbc.put_vulnerability_id(tx, advisory.vulnerability_id)
    except DBError as exc:
        raise DBError(f"failed to save the vulnerability ID: {exc}") from exc

    try:
        dbc.put_data_source(tx, advisory.platform, SOURCE)
    except DBError as exc:
        raise DBError(f"failed to put data source: {exc}") from exc


class VulnSrc:
    """Loads the Debian security tracker into the database and reads it back."""

    def __init__(self, dbc: Config | None = None, put: CustomPut | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()
        self._put = put if put is not None else default_put

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | os.PathLike[str]) -> None:
        state = _State()
        try:
            self._parse(os.fspath(directory), state)
        except ValueError as exc:
            raise ValueError(f"parse error: {exc}") from exc
        try:
            self._save(state)
        except DBError as exc:
            raise DBError(f"save error: {exc}") from exc

    # Parsing

    def _parse(self, directory: str, state: _State) -> None:
        root = os.path.join(directory, DEBIAN_DIR, "tracker")
        try:
            self._parse_distributions(root, state)
        except ValueError as exc:
            raise ValueError(f"distributions error: {exc}") from exc
        try:
            self._parse_sources(os.path.join(root, SOURCES_DIR), state)
        except ValueError as exc:
            raise ValueError(f"source parse error: {exc}") from exc
        try:
            self._parse_sources(os.path.join(root, UPDATE_SOURCES_DIR), state)
        except ValueError as exc:
            raise ValueError(f"updates-source parse error: {exc}") from exc
        try:
            self._parse_cve(os.path.join(root, CVE_DIR), state)
        except ValueError as exc:
            raise ValueError(f"CVE error: CVE parse error: {exc}") from exc
        logger.info("  Parsing DLA JSON files...")
        try:
            self._parse_advisory(os.path.join(root, DLA_DIR), state)
        except ValueError as exc:
            raise ValueError(f"DLA error: DLA parse error: {exc}") from exc
        logger.info("  Parsing DSA JSON files...")
        try:
            self._parse_advisory(os.path.join(root, DSA_DIR), state)
        except ValueError as exc:
            raise ValueError(f"DSA error: DSA parse error: {exc}") from exc

    def _parse_distributions(self, root: str, state: _State) -> None:
        logger.info("  Parsing distributions...")
        with open(os.path.join(root, DISTRIBUTIONS_FILE), "rb") as f:
            try:
                parsed = _object(json.load(f))
                majors = {
                    dist: _text(_field(_object(value), "major-version"))
                    for dist, value in parsed.items()
                }
            except ValueError as exc:
                raise ValueError(f"failed to decode Debian distribution JSON: {exc}") from exc
        for dist, major in majors.items():
            # An empty major version is sid, the development release.
            if major:
                state.distributions[dist] = major

    def _parse_sources(self, directory: str, state: _State) -> None:
        for code in list(state.distributions):
            code_path = os.path.join(directory, code)
            if not exists(code_path):
                continue
            logger.info("  Parsing %s sources...", code)
            for path, f in file_walk(code_path):
                try:
                    data = _object(json.load(f))
                    packages = _strings(_field(data, "Package"))
                    versions = _strings(_field(data, "Version"))
                except ValueError as exc:
                    raise ValueError(
                        f"filepath walk error: failed to decode {path}: {exc}"
                    ) from exc
                if not packages or not versions:
                    continue
                key = _Key(code_name=code, pkg_name=packages[0])
                version = versions[0]
                stored = state.pkg_versions.get(key)
                if stored is not None:
                    try:
                        if compare_versions(stored, version) >= 0:
                            continue
                    except ValueError as exc:
                        raise ValueError(
                            f"filepath walk error: version comparison error: {exc}"
                        ) from exc
                state.pkg_versions[key] = version

    def _bugs(self, directory: str) -> Iterator[_Bug]:
        for path, f in file_walk(directory):
            try:
                bug = _Bug.from_json(json.load(f))
            except ValueError as exc:
                raise ValueError(f"walk error: json decode error ({path}): {exc}") from exc
            yield bug

    def _parse_cve(self, directory: str, state: _State) -> None:
        logger.info("  Parsing CVE JSON files...")
        for bug in self._bugs(directory):
            severities: dict[str, str] = {}
            cve_id = bug.id
            state.details[cve_id] = bug.description.strip("()")

            for ann in bug.annotations:
                if ann.type != PACKAGE_TYPE:
                    continue
                key = _Key(code_name=ann.release, pkg_name=ann.package, vuln_id=cve_id)

                if ann.kind in SKIP_STATUSES:
                    state.not_affected.add(key)
                    continue

                if not ann.release:  # sid
                    sid_key = _Key(pkg_name=ann.package, vuln_id=cve_id)
                    if ann.severity:
                        severities[ann.package] = ann.severity
                        sid_key = sid_key._replace(severity=ann.severity)
                    state.sid_fixed_versions[sid_key] = ann.version
                    continue

                advisory = Advisory(
                    fixed_version=ann.version,
                    severity=severities.get(ann.package, ""),
                )
                if not ann.version:
                    # Only kept when there is no fixed version, e.g. no-dsa.
                    advisory.state = ann.kind
                # DLA/DSA may overwrite this later.
                state.bkt_advisories[key] = advisory

    def _parse_advisory(self, directory: str, state: _State) -> None:
        for bug in self._bugs(directory):
            cve_ids: list[str] = []
            advisory_id = bug.id
            state.details[advisory_id] = bug.description.strip("()")

            for ann in bug.annotations:
                if ann.type == XREF_TYPE:
                    cve_ids = ann.bugs
                    continue
                if ann.type != PACKAGE_TYPE:
                    continue

                # Advisories without CVE-IDs are stored under their own ID.
                vuln_ids = cve_ids or [advisory_id]
                for vuln_id in vuln_ids:
                    key = _Key(code_name=ann.release, pkg_name=ann.package, vuln_id=vuln_id)
                    if ann.kind in SKIP_STATUSES:
                        state.not_affected.add(key)
                        continue

                    existing = state.bkt_advisories.get(key)
                    if existing is not None:
                        # The latest fix wins; earlier fixes are taken as insufficient.
                        try:
                            newer = compare_versions(ann.version, existing.fixed_version) > 0
                        except ValueError as exc:
                            raise ValueError(f"version error {advisory_id}: {exc}") from exc
                        adv = replace(existing, vendor_ids=list(existing.vendor_ids))
                        if newer:
                            adv.fixed_version = ann.version
                            adv.state = ""
                        adv.vendor_ids.append(advisory_id)
                    else:
                        adv = Advisory(fixed_version=ann.version, vendor_ids=[advisory_id])
                    state.bkt_advisories[key] = adv

    # Saving

    def _save(self, state: _State) -> None:
        logger.info("Saving Debian DB")
        try:
            self._dbc.batch_update(lambda tx: self._commit(tx, state))
        except DBError as exc:
            raise DBError(f"batch update error: {exc}") from exc
        logger.info("Saved Debian DB")

    def _commit(self, tx: Transaction, state: _State) -> None:
        for sid_key, sid_ver in state.sid_fixed_versions.items():
            pkg_name, cve_id = sid_key.pkg_name, sid_key.vuln_id

            # Not affected in any release.
            if _Key(pkg_name=pkg_name, vuln_id=cve_id) in state.not_affected:
                continue

            for code in state.distributions:
                key = _Key(code_name=code, pkg_name=pkg_name, vuln_id=cve_id)
                if key in state.not_affected:
                    continue

                stored = state.bkt_advisories.get(key)
                # A stated fix for the release is stored later; a state such as
                # no-dsa or postponed may be wrong, so it is checked against sid.
                if stored is not None and not stored.state:
                    continue
                adv = (
                    replace(stored, vendor_ids=list(stored.vendor_ids))
                    if stored is not None
                    else Advisory()
                )

                code_ver = state.pkg_versions.get(_Key(code_name=code, pkg_name=pkg_name))
                if code_ver is None:
                    continue

                try:
                    fixed = _has_fixed_version(sid_ver, code_ver)
                except ValueError as exc:
                    raise DBError(f"version error: {exc}") from exc

                if fixed:
                    adv.fixed_version = sid_ver
                    adv.state = ""
                    state.bkt_advisories.pop(key, None)

                adv.severity = sid_key.severity
                try:
                    self._put_advisory(tx, state, key, adv)
                except DBError as exc:
                    raise DBError(f"put advisory error: {exc}") from exc

        # Advisories with a codename and a fixed version.
        for key, advisory in state.bkt_advisories.items():
            try:
                self._put_advisory(tx, state, key, advisory)
            except DBError as exc:
                raise DBError(f"put advisory error: {exc}") from exc

    def _put_advisory(self, tx: Transaction, state: _State, key: _Key, advisory: Advisory) -> None:
        major_version = state.distributions.get(key.code_name)
        if major_version is None:
            # Stale codenames such as squeeze and sarge.
            return
        filled = replace(
            advisory,
            vendor_ids=list(advisory.vendor_ids),
            vulnerability_id=key.vuln_id,
            pkg_name=key.pkg_name,
            platform=PLATFORM_FORMAT.format(major_version),
            # The Debian description is short, so it serves as the title.
            title=state.details.get(key.vuln_id, ""),
        )
        try:
            self._put(self._dbc, tx, filled)
        except DBError as exc:
            raise DBError(f"put error: {exc}") from exc

    def get(self, release: str, pkg_name: str) -> list[PackageAdvisory]:
        bucket = PLATFORM_FORMAT.format(release)
        try:
            return self._dbc.get_advisories(bucket, pkg_name)
        except DBError as exc:
            raise DBError(f"failed to get Debian advisories: {exc}") from exc