# advisorydb

`advisorydb` reads security advisories from local copies of vulnerability
feeds and writes them into a single database file of nested buckets. The file
can then be queried for the advisories that affect a package on a platform.

Supported feeds:

| Module                  | Feed                                  | Platform bucket          |
|-------------------------|---------------------------------------|--------------------------|
| `advisorydb.alpine`     | Alpine secdb                          | `alpine <version>`       |
| `advisorydb.chainguard` | Chainguard security data              | `chainguard`             |
| `advisorydb.archlinux`  | Arch Linux vulnerable issues          | `archlinux`              |
| `advisorydb.bundler`    | Ruby Advisory Database                | `rubygems::Ruby Advisory Database` |
| `advisorydb.amazon`     | Amazon Linux Security Center (ALAS)   | `amazon linux <version>` |
| `advisorydb.alma`       | AlmaLinux product errata              | `alma <version>`         |
| `advisorydb.debian`     | Debian security tracker               | `debian <version>`       |

Each feed module has a `VulnSrc` class with `name()` and `update(directory)`;
all but `bundler` also have `get(...)` to read advisories back
(`archlinux.VulnSrc.get` takes only a package name).

## Installation

Install with pip. The runtime dependencies are PyYAML (for the Ruby advisory
files) and tqdm (for `utils.ProgressBar`). The `test` extra adds pytest.

## The cache directory

Feeds read their raw data from a cache directory, for example
`<cache>/vuln-list/alpine/...`, `<cache>/vuln-list/amazon/<version>/...`,
`<cache>/ruby-advisory-db/gems/...` or `<cache>/vuln-list-debian/tracker/...`.
The database is kept at `<cache>/db/trivy.db` and its metadata at
`<cache>/db/metadata.json`:

```python
from advisorydb import db, metadata

db.db_dir("/var/cache/advisories")    # "/var/cache/advisories/db"
db.db_path("/var/cache/advisories")   # "/var/cache/advisories/db/trivy.db"
metadata.path("/var/cache/advisories")  # "/var/cache/advisories/db/metadata.json"
```

`utils.cache_dir()` gives a default location under the user's cache directory
(or the temporary directory when there is none).

## Loading a feed

`db.init(cache)` opens the database (creating the directory, and replacing a
file that cannot be opened as a database); `db.close()` closes it. The
database is held module-wide, and `db.Config` works on whichever one is open.

```python
from advisorydb import db, alpine

cache = "/var/cache/advisories"
db.init(cache)
try:
    alpine.VulnSrc(db.Config()).update(cache)
finally:
    db.close()
```

A feed's advisories go into staging buckets: `advisory-detail`,
`vulnerability-detail` and `vulnerability-id`, plus the feed's data source
under `data-source`. `db.Config` can copy the staged advisories into each
platform's bucket and then drop the staging buckets:

```python
dbc = db.Config()
dbc.for_each_vulnerability_id(lambda tx, vuln_id: dbc.save_advisory_details(tx, vuln_id))
dbc.delete_vulnerability_id_bucket()
dbc.delete_vulnerability_detail_bucket()
dbc.delete_advisory_detail_bucket()
```

`for_each_vulnerability_id` calls the function for every staged ID inside one
write transaction.

`debian.VulnSrc` takes an optional `put` function in place of
`debian.default_put`, to store its advisories differently.

## Querying advisories

```python
from advisorydb import db, debian

db.init(cache)
try:
    for advisory in debian.VulnSrc(db.Config()).get("10", "openssl"):
        print(advisory.vulnerability_id, advisory.fixed_version, advisory.status)
finally:
    db.close()
```

`db.Config.get_advisories(source, pkg_name)` works on any bucket name. A name
containing `::`, such as `"composer::"`, is taken as a prefix and every root
bucket that starts with it is searched. Each returned `Advisory` carries the
bucket's `DataSource` when one was stored. Other lookups include
`get_vulnerability`, `get_vulnerability_detail`, `red_hat_repo_to_cpes` and
`red_hat_nvr_to_cpes`.

Database failures raise `db.DBError`; malformed feed files raise
`ValueError`; a missing feed directory raises `FileNotFoundError`.

## Storage

`db.Store` is the file-backed store of nested buckets (an SQLite file). It
offers `view()` and `update()` context managers yielding a `Transaction`, and
`batch(fn)`. Transactions and `Bucket`s support `bucket`,
`create_bucket_if_not_exists`, `get`, `put` (bytes values) and `items`.

## Types and helpers

`advisorydb.types` holds the stored records — `Advisory`, `Advisories`,
`VulnerabilityDetail`, `Vulnerability`, `DataSource`, `CVSS` — and the
`Severity` and `Status` enumerations. Records convert to and from their
stored JSON form with `to_dict()` and `from_dict()`.

```python
from advisorydb.types import new_severity, compare_severity_string, new_status

new_severity("HIGH")                        # Severity.HIGH
compare_severity_string("LOW", "CRITICAL")  # 3
new_status("will_not_fix")                  # Status.WILL_NOT_FIX
```

Other helpers: `bucket.bucket_name(ecosystem, data_source)`,
`alma.compare_rpm_versions`, `debian.compare_versions`, and in
`advisorydb.utils`: `construct_version`, `file_walk`, `exists`,
`load_json_file`, `must_time_parse`, `unique_ints`, `has_intersection`,
`unique_strings`, `is_int`, `merge`, `Spinner` and `ProgressBar`.

## Metadata

```python
from datetime import datetime, timedelta, timezone
from advisorydb.metadata import Client, Metadata

client = Client(cache)
now = datetime.now(timezone.utc)
client.update(Metadata(version=2, next_update=now + timedelta(hours=24), updated_at=now))
print(client.get().next_update)
```

## What it does not do

- It has no command-line program; everything is used from Python.
- It does not download feeds; the cache directory must already hold them.
- It has no single build step that runs the feeds, writes metadata and
  cleans up; the loading, promotion and deletion calls above are made by the
  caller.
- Nothing merges the per-source vulnerability details into the
  `vulnerability` bucket; `Config.put_vulnerability` stores a `Vulnerability`
  that the caller has built.