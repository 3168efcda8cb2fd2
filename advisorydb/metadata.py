"""The metadata file that records when the database was built and is next due."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from advisorydb.db import db_dir
from advisorydb.types import format_time, parse_time

METADATA_FILE = "metadata.json"

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _time_or_zero(value: Any) -> datetime:
    return parse_time(value) if value else ZERO_TIME


@dataclass
class Metadata:
    """Schema version and update times of a database."""

    version: int = 0
    next_update: datetime = field(default=ZERO_TIME)
    updated_at: datetime = field(default=ZERO_TIME)
    downloaded_at: datetime = field(default=ZERO_TIME)  # Filled in after downloading.

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.version:
            data["Version"] = self.version
        data["NextUpdate"] = format_time(self.next_update)
        data["UpdatedAt"] = format_time(self.updated_at)
        data["DownloadedAt"] = format_time(self.downloaded_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Metadata:
        return cls(
            version=int(data.get("Version") or 0),
            next_update=_time_or_zero(data.get("NextUpdate")),
            updated_at=_time_or_zero(data.get("UpdatedAt")),
            downloaded_at=_time_or_zero(data.get("DownloadedAt")),
        )


def path(cache_dir: str | os.PathLike[str]) -> str:
    """Path of the metadata file under cache_dir."""
    return os.path.join(db_dir(cache_dir), METADATA_FILE)


class Client:
    """Reads, writes and removes the metadata file."""

    def __init__(self, cache_dir: str | os.PathLike[str]) -> None:
        self.file_path = path(cache_dir)

    def get(self) -> Metadata:
        with open(self.file_path, encoding="utf-8") as f:
            try:
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
                return Metadata.from_dict(data)
            except (ValueError, TypeError) as exc:
                raise ValueError(f"unable to decode metadata: {exc}") from exc

    def update(self, meta: Metadata) -> None:
        os.makedirs(os.path.dirname(self.file_path), mode=0o744, exist_ok=True)
        with open(self.file_path, "w", encoding="utf-8") as f:
            json.dump(meta.to_dict(), f, separators=(",", ":"))
            f.write("\n")

    def delete(self) -> None:
        os.remove(self.file_path)