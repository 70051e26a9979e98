[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dnsagent"
version = "0.1.0"
description = "Client discovery, profile routing and a control channel for a local DNS forwarding agent"
requires-python = ">=3.10"
keywords = [
    "dns",
    "dhcp",
    "mdns",
    "arp",
    "hosts",
    "resolver",
    "forwarder",
    "router",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]
dependencies = [
    "dnspython>=2.3",
    "psutil>=5.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
dnsagent = "dnsagent.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["dnsagent"]

[tool.hatch.build.targets.sdist]
include = [
    "dnsagent",
    "tests",
]

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
