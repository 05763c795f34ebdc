[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kadnode"
version = "2.4.0"
description = "Building blocks for peer-to-peer name resolution over a Kademlia DHT: identifiers, searches, peer files and an event loop"
requires-python = ">=3.10"
dependencies = []
keywords = ["dht", "kademlia", "p2p", "dns", "name-resolution", "base32"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kadnode"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
