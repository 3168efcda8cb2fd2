"""AlmaLinux product errata."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from itertools import zip_longest
from typing import Any

from advisorydb.db import Config, DBError, Transaction
from advisorydb.types import Advisory, DataSource, Severity, VulnerabilityDetail
from advisorydb.utils import construct_version, file_walk

logger = logging.getLogger(__name__)

ALMA_DIR = "alma"
PLATFORM_FORMAT = "alma {}"

SOURCE = DataSource(
    id="alma",
    name="AlmaLinux Product Errata",
    url="https://errata.almalinux.org/",
)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class _Package:
    name: str = ""
    version: str = ""
    release: str = ""
    epoch: str = ""
    arch: str = ""
    src: str = ""
    filename: str = ""
    sum: str = ""
    sum_type: Any = None
    reboot_suggested: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> _Package:
        return cls(
            name=_text(data.get("name")),
            version=_text(data.get("version")),
            release=_text(data.get("release")),
            epoch=_text(data.get("epoch")),
            arch=_text(data.get("arch")),
            src=_text(data.get("src")),
            filename=_text(data.get("filename")),
            sum=_text(data.get("sum")),
            sum_type=data.get("sum_type"),
            reboot_suggested=int(data.get("reboot_suggested") or 0),
        )


@dataclass
class _Module:
    stream: str = ""
    name: str = ""
    version: int = 0
    arch: str = ""
    context: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> _Module:
        return cls(
            stream=_text(data.get("stream")),
            name=_text(data.get("name")),
            version=int(data.get("version") or 0),
            arch=_text(data.get("arch")),
            context=_text(data.get("context")),
        )


@dataclass
class _Pkglist:
    name: str = ""
    shortname: str = ""
    packages: list[_Package] = field(default_factory=list)
    module: _Module = field(default_factory=_Module)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> _Pkglist:
        return cls(
            name=_text(data.get("name")),
            shortname=_text(data.get("shortname")),
            packages=[_Package.from_dict(p) for p in data.get("packages") or []],
            module=_Module.from_dict(data.get("module") or {}),
        )


@dataclass
class _Reference:
    href: str = ""
    type: str = ""
    id: str = ""
    title: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> _Reference:
        return cls(
            href=_text(data.get("href")),
            type=_text(data.get("type")),
            id=_text(data.get("id")),
            title=_text(data.get("title")),
        )


@dataclass
class Erratum:
    """One AlmaLinux erratum."""

    id: str = ""
    bs_repo_id: str = ""
    updateinfo_id: str = ""
    description: str = ""
    fromstr: str = ""
    issued_date: int = 0
    pkglist: _Pkglist = field(default_factory=_Pkglist)
    pushcount: str = ""
    references: list[_Reference] = field(default_factory=list)
    release: str = ""
    rights: str = ""
    severity: str = ""
    solution: str = ""
    status: str = ""
    summary: str = ""
    title: str = ""
    type: str = ""
    updated_date: int = 0
    version: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Erratum:
        return cls(
            id=_text((data.get("_id") or {}).get("$oid")),
            bs_repo_id=_text((data.get("bs_repo_id") or {}).get("$oid")),
            updateinfo_id=_text(data.get("updateinfo_id")),
            description=_text(data.get("description")),
            fromstr=_text(data.get("fromstr")),
            issued_date=int((data.get("issued_date") or {}).get("$date") or 0),
            pkglist=_Pkglist.from_dict(data.get("pkglist") or {}),
            pushcount=_text(data.get("pushcount")),
            references=[_Reference.from_dict(r) for r in data.get("references") or []],
            release=_text(data.get("release")),
            rights=_text(data.get("rights")),
            severity=_text(data.get("severity")),
            solution=_text(data.get("solution")),
            status=_text(data.get("status")),
            summary=_text(data.get("summary")),
            title=_text(data.get("title")),
            type=_text(data.get("type")),
            updated_date=int((data.get("updated_date") or {}).get("$date") or 0),
            version=_text(data.get("version")),
        )


@dataclass
class PutInput:
    """Everything stored for one CVE of one erratum."""

    platform_name: str
    cve_id: str
    vuln: VulnerabilityDetail
    advisories: dict[str, Advisory]
    erratum: Erratum = field(default_factory=Erratum)


_VERSION_SEGMENT = re.compile(r"~|\^|[0-9]+|[A-Za-z]+")


def _cmp(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _rpmvercmp(a: str, b: str) -> int:
    if a == b:
        return 0
    for x, y in zip_longest(_VERSION_SEGMENT.findall(a), _VERSION_SEGMENT.findall(b)):
        if x == "~" or y == "~":
            if x != "~":
                return 1
            if y != "~":
                return -1
            continue
        if x == "^" or y == "^":
            if x is None:
                return -1
            if y is None:
                return 1
            if x != "^":
                return 1
            if y != "^":
                return -1
            continue
        if x is None:
            return -1
        if y is None:
            return 1
        x_digit, y_digit = x.isdigit(), y.isdigit()
        if x_digit != y_digit:
            return 1 if x_digit else -1
        result = _cmp(int(x), int(y)) if x_digit else _cmp(x, y)
        if result:
            return result
    return 0


def _split_evr(value: str) -> tuple[int, str, str]:
    epoch = 0
    if ":" in value:
        epoch_text, value = value.split(":", 1)
        epoch = int(epoch_text) if epoch_text.isdigit() else 0
    version, _, release = value.rpartition("-")
    if not version:
        version, release = release, ""
    return epoch, version, release


def compare_rpm_versions(v1: str, v2: str) -> int:
    """Compare two epoch:version-release strings; negative, zero or positive."""
    e1, ver1, rel1 = _split_evr(v1)
    e2, ver2, rel2 = _split_evr(v2)
    return _cmp(e1, e2) or _rpmvercmp(ver1, ver2) or _rpmvercmp(rel1, rel2)


_SEVERITIES = {
    "low": Severity.LOW,
    "moderate": Severity.MEDIUM,
    "important": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


def _generalize_severity(severity: str) -> Severity:
    return _SEVERITIES.get(severity.lower(), Severity.UNKNOWN)


class VulnSrc:
    """Loads AlmaLinux errata into the database; subclasses may override put and get."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | os.PathLike[str]) -> None:
        root = os.path.join(os.fspath(directory), "vuln-list", ALMA_DIR)
        errata = self._parse(root)
        try:
            self._save(errata)
        except DBError as exc:
            raise DBError(f"error in Alma save: {exc}") from exc

    def _parse(self, root: str) -> dict[str, list[Erratum]]:
        if not os.path.exists(root):
            raise FileNotFoundError(
                2, f"error in Alma walk: {root}: no such file or directory", root
            )
        errata: dict[str, list[Erratum]] = {}
        for file_path, f in file_walk(root):
            try:
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
                erratum = Erratum.from_dict(data)
            except (ValueError, TypeError, AttributeError) as exc:
                raise ValueError(
                    f"error in Alma walk: failed to decode Alma erratum ({file_path}): {exc}"
                ) from exc
            dirs = os.path.normpath(file_path).split(os.sep)
            if len(dirs) < 3:
                logger.warning("invalid path: %s", file_path)
                continue
            errata.setdefault(dirs[-3], []).append(erratum)
        return errata

    def _save(self, errata_by_version: dict[str, list[Erratum]]) -> None:
        def commit(tx: Transaction) -> None:
            for major_version, errata in errata_by_version.items():
                platform = PLATFORM_FORMAT.format(major_version)
                try:
                    self._dbc.put_data_source(tx, platform, SOURCE)
                except DBError as exc:
                    raise DBError(f"failed to put data source: {exc}") from exc
                try:
                    self._commit(tx, platform, errata)
                except DBError as exc:
                    raise DBError(f"Alma {major_version} commit error: {exc}") from exc

        self._dbc.batch_update(commit)

    def _commit(self, tx: Transaction, platform: str, errata: list[Erratum]) -> None:
        for erratum in errata:
            references = [ref.href for ref in erratum.references if ref.type != "cve"]
            module = erratum.pkglist.module
            for ref in erratum.references:
                if ref.type != "cve":
                    continue
                advisories: dict[str, Advisory] = {}
                for pkg in erratum.pkglist.packages:
                    if pkg.arch not in ("noarch", "x86_64"):
                        continue
                    pkg_name = pkg.name
                    if module.name and module.stream:
                        pkg_name = f"{module.name}:{module.stream}::{pkg.name}"
                    advisory = Advisory(
                        fixed_version=construct_version(pkg.epoch, pkg.version, pkg.release)
                    )
                    existing = advisories.get(pkg_name)
                    if existing is None or compare_rpm_versions(
                        advisory.fixed_version, existing.fixed_version
                    ) < 0:
                        advisories[pkg_name] = advisory

                vuln = VulnerabilityDetail(
                    severity=_generalize_severity(erratum.severity),
                    title=erratum.title,
                    description=erratum.description,
                    references=list(references),
                )
                try:
                    self.put(
                        tx,
                        PutInput(
                            platform_name=platform,
                            cve_id=ref.id,
                            vuln=vuln,
                            advisories=advisories,
                            erratum=erratum,
                        ),
                    )
                except DBError as exc:
                    raise DBError(f"db put error: {exc}") from exc

    def put(self, tx: Transaction, put_input: PutInput) -> None:
        try:
            self._dbc.put_vulnerability_detail(tx, put_input.cve_id, SOURCE.id, put_input.vuln)
        except DBError as exc:
            raise DBError(f"failed to save Alma vulnerability: {exc}") from exc
        try:
            self._dbc.put_vulnerability_id(tx, put_input.cve_id)
        except DBError as exc:
            raise DBError(f"failed to save the vulnerability ID: {exc}") from exc
        for pkg_name, advisory in put_input.advisories.items():
            try:
                self._dbc.put_advisory_detail(
                    tx, put_input.cve_id, pkg_name, [put_input.platform_name], advisory
                )
            except DBError as exc:
                raise DBError(f"failed to save Alma advisory: {exc}") from exc

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        bucket = PLATFORM_FORMAT.format(release)
        try:
            return self._dbc.get_advisories(bucket, pkg_name)
        except DBError as exc:
            raise DBError(f"failed to get Alma advisories: {exc}") from exc