"""Amazon Linux security center advisories (ALAS)."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from advisorydb.db import Config, DBError, Transaction
from advisorydb.types import Advisory, DataSource, Severity, VulnerabilityDetail
from advisorydb.utils import construct_version, file_walk

logger = logging.getLogger(__name__)

AMAZON_DIR = "amazon"
PLATFORM_FORMAT = "amazon linux {}"
TARGET_VERSIONS = ("1", "2", "2022", "2023")

SOURCE = DataSource(
    id="amazon",
    name="Amazon Linux Security Center",
    url="https://alas.aws.amazon.com/",
)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class Package:
    """An affected package."""

    name: str = ""
    epoch: str = ""
    version: str = ""
    release: str = ""
    arch: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Package:
        return cls(
            name=_text(data.get("name")),
            epoch=_text(data.get("epoch")),
            version=_text(data.get("version")),
            release=_text(data.get("release")),
            arch=_text(data.get("arch")),
        )


@dataclass
class Reference:
    href: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reference:
        return cls(href=_text(data.get("href")))


@dataclass
class ALAS:
    """One Amazon Linux security advisory."""

    id: str = ""
    title: str = ""
    severity: str = ""
    description: str = ""
    packages: list[Package] = field(default_factory=list)
    references: list[Reference] = field(default_factory=list)
    cve_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ALAS:
        return cls(
            id=_text(data.get("id")),
            title=_text(data.get("title")),
            severity=_text(data.get("severity")),
            description=_text(data.get("description")),
            packages=[Package.from_dict(p) for p in data.get("packages") or []],
            references=[Reference.from_dict(r) for r in data.get("references") or []],
            cve_ids=[_text(c) for c in data.get("cveids") or []],
        )


_SEVERITIES = {
    "low": Severity.LOW,
    "medium": Severity.MEDIUM,
    "important": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


def _severity_from_priority(priority: str) -> Severity:
    return _SEVERITIES.get(priority, Severity.UNKNOWN)


class VulnSrc:
    """Loads Amazon Linux advisories into the database and reads them back."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | os.PathLike[str]) -> None:
        root = os.path.join(os.fspath(directory), "vuln-list", AMAZON_DIR)
        if not os.path.exists(root):
            raise FileNotFoundError(
                2, f"error in Amazon walk: {root}: no such file or directory", root
            )
        advisories: dict[str, list[ALAS]] = {}
        for file_path, f in file_walk(root):
            parts = os.path.normpath(file_path).split(os.sep)
            if len(parts) < 2:
                continue
            version = parts[-2]
            if version not in TARGET_VERSIONS:
                logger.info("unsupported Amazon version: %s", version)
                continue
            try:
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
                alas = ALAS.from_dict(data)
            except (ValueError, TypeError) as exc:
                raise ValueError(
                    f"error in Amazon walk: failed to decode Amazon JSON ({file_path}): {exc}"
                ) from exc
            advisories.setdefault(version, []).append(alas)

        logger.info("Saving Amazon DB")
        try:
            self._dbc.batch_update(lambda tx: self._commit(tx, advisories))
        except DBError as exc:
            raise DBError(f"error in Amazon save: {exc}") from exc

    def _commit(self, tx: Transaction, advisories: dict[str, list[ALAS]]) -> None:
        for major_version, alas_list in advisories.items():
            platform = PLATFORM_FORMAT.format(major_version)
            try:
                self._dbc.put_data_source(tx, platform, SOURCE)
            except DBError as exc:
                raise DBError(f"failed to put data source: {exc}") from exc
            for alas in alas_list:
                references = [ref.href for ref in alas.references]
                for cve_id in alas.cve_ids:
                    for pkg in alas.packages:
                        advisory = Advisory(
                            fixed_version=construct_version(pkg.epoch, pkg.version, pkg.release)
                        )
                        try:
                            self._dbc.put_advisory_detail(
                                tx, cve_id, pkg.name, [platform], advisory
                            )
                        except DBError as exc:
                            raise DBError(f"failed to save Amazon advisory: {exc}") from exc

                        vuln = VulnerabilityDetail(
                            severity=_severity_from_priority(alas.severity),
                            references=list(references),
                            description=alas.description,
                        )
                        try:
                            self._dbc.put_vulnerability_detail(tx, cve_id, SOURCE.id, vuln)
                        except DBError as exc:
                            raise DBError(
                                f"failed to save Amazon vulnerability detail: {exc}"
                            ) from exc

                        try:
                            self._dbc.put_vulnerability_id(tx, cve_id)
                        except DBError as exc:
                            raise DBError(f"failed to save the vulnerability ID: {exc}") from exc

    def get(self, version: str, pkg_name: str) -> list[Advisory]:
        bucket = PLATFORM_FORMAT.format(version)
        try:
            return self._dbc.get_advisories(bucket, pkg_name)
        except DBError as exc:
            raise DBError(f"failed to get Amazon advisories: {exc}") from exc