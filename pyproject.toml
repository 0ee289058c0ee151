[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lightshut"
version = "0.1.0"
description = "Graceful asyncio shutdown control, buffered metric aggregation and sampling helpers for light clients"
requires-python = ">=3.10"
dependencies = []
keywords = ["asyncio", "shutdown", "graceful", "metrics", "telemetry", "sampling"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Topic :: System :: Distributed Computing",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["lightshut"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
