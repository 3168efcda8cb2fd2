"""Chainguard security data advisories."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from advisorydb.db import Config, DBError, Transaction
from advisorydb.types import Advisory, DataSource
from advisorydb.utils import file_walk

CHAINGUARD_DIR = "chainguard"
DISTRO_NAME = "chainguard"

SOURCE = DataSource(
    id="chainguard",
    name="Chainguard Security Data",
    url="https://packages.cgr.dev/chainguard/security.json",
)


@dataclass
class _SecDBAdvisory:
    pkg_name: str = ""
    secfixes: dict[str, list[str]] = field(default_factory=dict)
    apkurl: str = ""
    archs: list[str] = field(default_factory=list)
    urlprefix: str = ""
    reponame: str = ""
    distroversion: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> _SecDBAdvisory:
        return cls(
            pkg_name=data.get("name") or "",
            secfixes={
                str(version): list(ids or [])
                for version, ids in (data.get("secfixes") or {}).items()
            },
            apkurl=data.get("apkurl") or "",
            archs=list(data.get("archs") or []),
            urlprefix=data.get("urlprefix") or "",
            reponame=data.get("reponame") or "",
            distroversion=data.get("distroversion") or "",
        )


class VulnSrc:
    """Loads Chainguard security data into the database and reads it back."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | os.PathLike[str]) -> None:
        root = os.path.join(os.fspath(directory), "vuln-list", CHAINGUARD_DIR)
        advisories = []
        for path, f in file_walk(root):
            try:
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            except ValueError as exc:
                raise ValueError(
                    f"error in Chainguard walk: failed to decode Chainguard advisory ({path}): {exc}"
                ) from exc
            advisories.append(_SecDBAdvisory.from_dict(data))
        try:
            self._save(advisories)
        except DBError as exc:
            raise DBError(f"error in Chainguard save: {exc}") from exc

    def _save(self, advisories: list[_SecDBAdvisory]) -> None:
        def commit(tx: Transaction) -> None:
            for adv in advisories:
                try:
                    self._dbc.put_data_source(tx, DISTRO_NAME, SOURCE)
                except DBError as exc:
                    raise DBError(f"failed to put data source: {exc}") from exc
                self._save_sec_fixes(tx, DISTRO_NAME, adv.pkg_name, adv.secfixes)

        self._dbc.batch_update(commit)

    def _save_sec_fixes(
        self, tx: Transaction, platform: str, pkg_name: str, secfixes: dict[str, list[str]]
    ) -> None:
        for fixed_version, vuln_ids in secfixes.items():
            advisory = Advisory(fixed_version=fixed_version)
            for vuln_id in vuln_ids:
                if not vuln_id.startswith("CVE-"):
                    continue
                try:
                    self._dbc.put_advisory_detail(tx, vuln_id, pkg_name, [platform], advisory)
                except DBError as exc:
                    raise DBError(f"failed to save Chainguard advisory: {exc}") from exc
                try:
                    self._dbc.put_vulnerability_id(tx, vuln_id)
                except DBError as exc:
                    raise DBError(f"failed to save the vulnerability ID: {exc}") from exc

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        """Advisories for a package; Chainguard has no releases, so release is ignored."""
        try:
            return self._dbc.get_advisories(DISTRO_NAME, pkg_name)
        except DBError as exc:
            raise DBError(f"failed to get Chainguard advisories: {exc}") from exc