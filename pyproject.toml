[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kcsdk"
version = "0.1.0"
description = "Tracker module loading and per-channel playback, glob matching, hex dumps and CRC-32 for a small handheld console SDK"
requires-python = ">=3.10"
dependencies = []
keywords = ["tracker", "mod", "xm", "s3m", "audio", "fnmatch", "glob", "hexdump", "crc32"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: Players",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kcsdk"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
