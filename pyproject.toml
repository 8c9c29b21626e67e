[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nrfdfu"
version = "0.1.3"
description = "A flashing tool for the nRF serial DFU bootloader"
requires-python = ">=3.10"
dependencies = [
    "pyserial",
]
keywords = ["nrf", "dfu", "bootloader", "firmware", "flashing", "elf", "slip"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
nrfdfu = "nrfdfu.flasher:main"

[tool.hatch.build.targets.wheel]
packages = ["nrfdfu"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
