"""File walking, version strings, collection helpers and progress display."""

from __future__ import annotations

import itertools
import json
import logging
import os
import re
import stat
import sys
import tempfile
import threading
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import IO, Any, BinaryIO

from tqdm import tqdm

from advisorydb.types import parse_time

logger = logging.getLogger(__name__)

QUIET = False

_APP_DIR = "advisorydb"
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


def _user_cache_dir() -> str | None:
    if sys.platform.startswith("win"):
        return os.environ.get("LOCALAPPDATA") or None
    home = os.environ.get("HOME")
    if sys.platform == "darwin":
        return os.path.join(home, "Library", "Caches") if home else None
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return xdg
    return os.path.join(home, ".cache") if home else None


def cache_dir() -> str:
    """Default cache directory: the user cache dir, else the temp dir."""
    return os.path.join(_user_cache_dir() or tempfile.gettempdir(), _APP_DIR)


def construct_version(epoch: str, version: str, release: str) -> str:
    """Join epoch, version and release as 'epoch:version-release'."""
    text = f"{epoch}:" if epoch not in ("", "0") else ""
    text += version
    if release:
        text += f"-{release}"
    return text


def _walk_files(path: str) -> Iterator[str]:
    if not stat.S_ISDIR(os.lstat(path).st_mode):
        yield path
        return
    with os.scandir(path) as it:
        entries = sorted(it, key=lambda entry: entry.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_files(entry.path)
        else:
            yield entry.path


def file_walk(root: str | os.PathLike[str]) -> Iterator[tuple[str, BinaryIO]]:
    """Yield (path, open binary file) for every non-empty file under root, in lexical order.

    Each file is closed once the caller moves on to the next one.
    """
    for path in _walk_files(os.fspath(root)):
        if os.lstat(path).st_size == 0:
            logger.info("invalid size: %s", path)
            continue
        with open(path, "rb") as f:
            yield path, f


def exists(path: str | os.PathLike[str]) -> bool:
    """Whether the path exists; errors other than absence are raised."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def load_json_file(file_name: str | os.PathLike[str]) -> Any:
    """Read and decode a JSON file."""
    with open(file_name, "rb") as f:
        try:
            return json.load(f)
        except ValueError as exc:
            raise ValueError(f"failed to decode file ({os.fspath(file_name)}): {exc}") from exc


def must_time_parse(value: str) -> datetime:
    """Parse an RFC 3339 time, raising ValueError when it is malformed."""
    return parse_time(value)


def unique_ints(values: Iterable[int]) -> list[int]:
    """Sorted distinct integers."""
    return sorted(set(values))


def has_intersection(list1: Iterable[int], list2: Iterable[int]) -> bool:
    """Whether the two collections share any element."""
    return not set(list1).isdisjoint(list2)


def unique_strings(values: Iterable[str]) -> list[str]:
    """Sorted distinct non-empty strings."""
    return sorted(set(values) - {""})


def is_int(s: str) -> bool:
    """Whether s is a decimal integer that fits in 64 bits."""
    if not _INT_PATTERN.fullmatch(s):
        return False
    return _INT64_MIN <= int(s) <= _INT64_MAX


def merge(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """Distinct strings from both collections, sorted."""
    return sorted(set(a) | set(b))


_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Spinner:
    """A terminal spinner followed by a suffix; silent when quiet."""

    def __init__(
        self,
        suffix: str = "",
        *,
        quiet: bool | None = None,
        stream: IO[str] | None = None,
        interval: float = 0.1,
    ) -> None:
        self.suffix = suffix
        self._enabled = not (QUIET if quiet is None else quiet)
        self._stream = stream if stream is not None else sys.stderr
        self._interval = interval
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if not self._enabled or self._thread is not None:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stopped.set()
        self._thread.join()
        self._thread = None
        self._stream.write("\r\033[K")
        self._stream.flush()

    def _spin(self) -> None:
        for frame in itertools.cycle(_SPINNER_FRAMES):
            self._stream.write(f"\r{frame}{self.suffix}")
            self._stream.flush()
            if self._stopped.wait(self._interval):
                break

    def __enter__(self) -> Spinner:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


class ProgressBar:
    """A counting progress bar; silent when quiet."""

    def __init__(self, total: int, *, quiet: bool | None = None, file: IO[str] | None = None) -> None:
        self.total = total
        self.count = 0
        quiet = QUIET if quiet is None else quiet
        self._bar = None if quiet else tqdm(total=total, file=file)

    def increment(self) -> None:
        self.count += 1
        if self._bar is not None:
            self._bar.update(1)

    def finish(self) -> None:
        if self._bar is not None:
            self._bar.close()

    def __enter__(self) -> ProgressBar:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.finish()