"""Ruby advisory database."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from advisorydb.bucket import bucket_name
from advisorydb.db import Config, DBError, Transaction
from advisorydb.types import Advisory, DataSource, VulnerabilityDetail

BUNDLER_DIR = "ruby-advisory-db"
RUBYGEMS = "rubygems"

SOURCE = DataSource(
    id="ruby-advisory-db",
    name="Ruby Advisory Database",
    url="https://github.com/rubysec/ruby-advisory-db",
)

BUCKET_NAME = bucket_name(RUBYGEMS, SOURCE.name)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _strings(value: Any) -> list[str]:
    return [_text(item) for item in value or []]


@dataclass
class RawAdvisory:
    """One advisory file of the Ruby advisory database."""

    gem: str = ""
    cve: str = ""
    osvdb: str = ""
    ghsa: str = ""
    title: str = ""
    url: str = ""
    description: str = ""
    cvss_v2: float = 0.0
    cvss_v3: float = 0.0
    patched_versions: list[str] = field(default_factory=list)
    unaffected_versions: list[str] = field(default_factory=list)
    related_cves: list[str] = field(default_factory=list)
    related_urls: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawAdvisory:
        related = data.get("related") or {}
        if not isinstance(related, dict):
            raise ValueError("related must be a mapping")
        return cls(
            gem=_text(data.get("gem")),
            cve=_text(data.get("cve")),
            osvdb=_text(data.get("osvdb")),
            ghsa=_text(data.get("ghsa")),
            title=_text(data.get("title")),
            url=_text(data.get("url")),
            description=_text(data.get("description")),
            cvss_v2=float(data.get("cvss_v2") or 0.0),
            cvss_v3=float(data.get("cvss_v3") or 0.0),
            patched_versions=_strings(data.get("patched_versions")),
            unaffected_versions=_strings(data.get("unaffected_versions")),
            related_cves=_strings(related.get("cve")),
            related_urls=_strings(related.get("url")),
        )


class VulnSrc:
    """Loads the Ruby advisory database into the store."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | os.PathLike[str]) -> None:
        root = os.path.join(os.fspath(directory), BUNDLER_DIR, "gems")

        def commit(tx: Transaction) -> None:
            try:
                self._dbc.put_data_source(tx, BUCKET_NAME, SOURCE)
            except DBError as exc:
                raise DBError(f"failed to put data source: {exc}") from exc
            self._walk(tx, root)

        try:
            self._dbc.batch_update(commit)
        except DBError as exc:
            raise DBError(f"failed to update bundler vulnerabilities: {exc}") from exc

    def _walk(self, tx: Transaction, root: str) -> None:
        if not os.path.exists(root):
            raise FileNotFoundError(2, "no such file or directory", root)
        errors: list[OSError] = []
        for dirpath, dirnames, filenames in os.walk(root, onerror=errors.append):
            if errors:
                raise errors[0]
            dirnames.sort()
            for filename in sorted(filenames):
                if filename.upper().startswith("OSVDB"):
                    continue
                self._load(tx, os.path.join(dirpath, filename))
        if errors:
            raise errors[0]

    def _load(self, tx: Transaction, path: str) -> None:
        with open(path, "rb") as f:
            content = f.read()
        try:
            data = yaml.safe_load(content)
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError(f"expected a mapping, got {type(data).__name__}")
            advisory = RawAdvisory.from_dict(data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            raise ValueError(f"failed to unmarshal YAML ({path}): {exc}") from exc

        if "osvdb.org" in advisory.url.lower():
            advisory.url = ""

        if advisory.cve:
            vuln_id = f"CVE-{advisory.cve}"
        elif advisory.ghsa:
            vuln_id = f"GHSA-{advisory.ghsa}"
        else:
            return

        detected = Advisory(
            patched_versions=advisory.patched_versions,
            unaffected_versions=advisory.unaffected_versions,
        )
        try:
            self._dbc.put_advisory_detail(tx, vuln_id, advisory.gem, [BUCKET_NAME], detected)
        except DBError as exc:
            raise DBError(f"failed to save ruby advisory: {exc}") from exc

        vuln = VulnerabilityDetail(
            cvss_score=advisory.cvss_v2,
            cvss_score_v3=advisory.cvss_v3,
            references=[advisory.url, *advisory.related_urls],
            title=advisory.title,
            description=advisory.description,
        )
        try:
            self._dbc.put_vulnerability_detail(tx, vuln_id, SOURCE.id, vuln)
        except DBError as exc:
            raise DBError(f"failed to save ruby vulnerability detail: {exc}") from exc

        try:
            self._dbc.put_vulnerability_id(tx, vuln_id)
        except DBError as exc:
            raise DBError(f"failed to save the vulnerability ID: {exc}") from exc