[build-system]
requires = ["hatchling>=1.18"]
build-backend = "hatchling.build"

[project]
name = "cortextools"
version = "0.1.0"
description = "Tools for operating Cortex: API client, end-to-end alerting receiver, benchmark workloads, chunk index helpers, log analysis and a shuffle sharding simulator."
requires-python = ">=3.10"
keywords = ["cortex", "prometheus", "alertmanager", "ruler", "monitoring", "benchmark"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "requests>=2.28",
    "pyyaml>=6.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[project.scripts]
cortextools-sim = "cortextools.sim:main"
cortextools-logtool = "cortextools.logtool:main"
cortextools-rules-migrator = "cortextools.rules_migrator:main"

[tool.hatch.build.targets.wheel]
packages = ["cortextools"]

[tool.hatch.build.targets.sdist]
include = ["cortextools", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
