[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kronos"
version = "0.1.0"
description = "Persistent memory store for coding agents: observations, sessions, prompts and relations in SQLite with full-text search."
requires-python = ">=3.10"
dependencies = []
keywords = ["memory", "sqlite", "fts5", "agents", "mcp", "knowledge-base"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kronos"]

[tool.hatch.build.targets.sdist]
include = ["kronos", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
