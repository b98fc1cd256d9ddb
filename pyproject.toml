[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "homesignal"
version = "0.1.0"
description = "Domain services for managed Home Assistant fleets: alerting, alert recipients, artifact upload slots, authorization, route matching and request throttling."
requires-python = ">=3.10"
dependencies = []
keywords = ["home-assistant", "alerting", "monitoring", "control-plane", "rate-limiting", "idempotency"]
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
    "Topic :: Home Automation",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["homesignal"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
