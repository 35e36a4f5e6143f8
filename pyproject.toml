[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tapscan"
version = "0.1.0"
description = "Commodore 64 TAP image scanning, turbo-loader decoding and audio export"
requires-python = ">=3.10"
dependencies = []
keywords = ["commodore", "c64", "tap", "tape", "turbo loader", "retro", "emulation", "wav", "au"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Multimedia :: Sound/Audio :: Conversion",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tapscan"]

[tool.pytest.ini_options]
addopts = "-ra"
