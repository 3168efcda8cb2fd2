"""Arch Linux vulnerable issue groups."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from advisorydb.db import Config, DBError, Transaction
from advisorydb.types import Advisory, DataSource, Severity, VulnerabilityDetail, new_severity
from advisorydb.utils import file_walk

ARCH_LINUX_DIR = "arch-linux"
PLATFORM_NAME = "archlinux"

SOURCE = DataSource(
    id="arch-linux",
    name="Arch Linux Vulnerable issues",
    url="https://security.archlinux.org/",
)


@dataclass
class ArchVulnGroup:
    """An Arch Linux vulnerability group (AVG)."""

    name: str = ""
    packages: list[str] = field(default_factory=list)
    status: str = ""
    severity: str = ""
    type: str = ""
    affected: str = ""
    fixed: str = ""
    issues: list[str] = field(default_factory=list)
    advisories: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArchVulnGroup:
        return cls(
            name=data.get("name") or "",
            packages=list(data.get("packages") or []),
            status=data.get("status") or "",
            severity=data.get("severity") or "",
            type=data.get("type") or "",
            affected=data.get("affected") or "",
            fixed=data.get("fixed") or "",
            issues=list(data.get("issues") or []),
            advisories=list(data.get("advisories") or []),
        )


def _convert_severity(severity: str) -> Severity:
    try:
        return new_severity(severity.upper())
    except ValueError:
        return Severity.UNKNOWN


class VulnSrc:
    """Loads Arch Linux vulnerability groups into the database and reads them back."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | os.PathLike[str]) -> None:
        root = os.path.join(os.fspath(directory), "vuln-list", ARCH_LINUX_DIR)
        groups = []
        for path, f in file_walk(root):
            try:
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            except ValueError as exc:
                raise ValueError(
                    f"error in arch linux walk: failed to decode arch linux json ({path}): {exc}"
                ) from exc
            groups.append(ArchVulnGroup.from_dict(data))
        try:
            self._save(groups)
        except DBError as exc:
            raise DBError(f"error in arch linux save: {exc}") from exc

    def _save(self, groups: list[ArchVulnGroup]) -> None:
        def commit(tx: Transaction) -> None:
            try:
                self._dbc.put_data_source(tx, PLATFORM_NAME, SOURCE)
            except DBError as exc:
                raise DBError(f"failed to put data source: {exc}") from exc
            try:
                self._commit(tx, groups)
            except DBError as exc:
                raise DBError(f"commit error: {exc}") from exc

        self._dbc.batch_update(commit)

    def _commit(self, tx: Transaction, groups: list[ArchVulnGroup]) -> None:
        for group in groups:
            for cve_id in group.issues:
                advisory = Advisory(fixed_version=group.fixed, affected_version=group.affected)
                for pkg in group.packages:
                    try:
                        self._dbc.put_advisory_detail(tx, cve_id, pkg, [PLATFORM_NAME], advisory)
                    except DBError as exc:
                        raise DBError(f"failed to save arch linux advisory: {exc}") from exc
                    vuln = VulnerabilityDetail(severity=_convert_severity(group.severity))
                    try:
                        self._dbc.put_vulnerability_detail(tx, cve_id, SOURCE.id, vuln)
                    except DBError as exc:
                        raise DBError(f"failed to save arch linux vulnerability: {exc}") from exc
                    try:
                        self._dbc.put_vulnerability_id(tx, cve_id)
                    except DBError as exc:
                        raise DBError(f"failed to save the vulnerability ID: {exc}") from exc

    def get(self, pkg_name: str) -> list[Advisory]:
        try:
            return self._dbc.get_advisories(PLATFORM_NAME, pkg_name)
        except DBError as exc:
            raise DBError(f"failed to get Arch Linux advisories: {exc}") from exc