[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "podwatt"
version = "0.1.0"
description = "Configuration, kubelet access, pod tracking and Prometheus text exposition for node, container and process energy metrics"
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "energy", "power", "prometheus", "metrics", "kubelet", "containers"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["podwatt"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
