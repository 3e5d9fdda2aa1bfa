[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aequi"
version = "2026.3.13"
description = "Bookkeeping storage on SQLite: schema migrations, ledger and billing records, backups and a JSON API server"
requires-python = ">=3.10"
keywords = ["bookkeeping", "accounting", "invoicing", "ledger", "sqlite", "backup"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Accounting",
]
dependencies = [
    "flask",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
aequi-server = "aequi.server:main"

[tool.hatch.build.targets.wheel]
packages = ["aequi"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
