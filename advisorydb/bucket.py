"""Bucket names for language ecosystems."""

SEPARATOR = "::"


def bucket_name(ecosystem: str, data_source: str) -> str:
    """Name of the bucket holding an ecosystem's advisories from one data source."""
    return f"{ecosystem}{SEPARATOR}{data_source}"