[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bleatt"
version = "0.1.0"
description = "Bluetooth Low Energy Attribute Protocol (ATT) layer and remote GATT discovery over an abstract HCI transport"
requires-python = ">=3.10"
dependencies = []
keywords = ["bluetooth", "ble", "att", "gatt", "attribute protocol"]
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
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bleatt"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
