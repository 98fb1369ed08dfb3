[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dwarfpc"
version = "0.1.0"
description = "Map program counters to source files, line numbers and function names using DWARF debug sections"
requires-python = ">=3.10"
dependencies = []
keywords = ["dwarf", "debug", "backtrace", "symbolizer", "line-table", "debuginfo"]
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
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
dwarfpc-hello = "dwarfpc.hello:main"

[tool.hatch.build.targets.wheel]
packages = ["dwarfpc"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
