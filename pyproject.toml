[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "advisorydb"
version = "0.1.0"
description = "Load Linux distribution and Ruby security feeds into a nested key/value advisory database and query it"
requires-python = ">=3.10"
keywords = [
    "vulnerability",
    "advisory",
    "security",
    "cve",
    "alpine",
    "debian",
    "amazon-linux",
    "almalinux",
    "archlinux",
    "rubygems",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: Database",
]
dependencies = [
    "pyyaml",
    "tqdm",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["advisorydb"]

[tool.hatch.build.targets.sdist]
include = ["advisorydb", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
