"""Load security feeds into a nested-bucket advisory database and query it."""

__version__ = "0.1.0"

__all__ = [
    "alma",
    "alpine",
    "amazon",
    "archlinux",
    "bucket",
    "bundler",
    "chainguard",
    "db",
    "debian",
    "metadata",
    "types",
    "utils",
]