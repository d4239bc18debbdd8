[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zfslocalpv"
version = "0.1.0"
description = "Create, clone, mount, snapshot, resize, back up and restore ZFS zvols and datasets on a Linux node"
requires-python = ">=3.10"
dependencies = []
keywords = ["zfs", "zvol", "dataset", "snapshot", "mount", "storage"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["zfslocalpv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
