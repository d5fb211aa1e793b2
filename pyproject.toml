[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "scanout"
version = "0.1.0"
description = "Result field sets, CSV and JSON output writers, scan progress monitoring and gateway discovery for network scanners"
requires-python = ">=3.10"
dependencies = []
keywords = ["scanner", "fieldset", "csv", "json", "monitoring", "netlink", "gateway"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["scanout"]

[tool.pytest.ini_options]
addopts = "-ra"
