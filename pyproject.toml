[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "admissionguard"
version = "0.1.0"
description = "Validating and mutating admission webhooks that protect managed cluster resources"
requires-python = ">=3.10"
dependencies = []
keywords = ["admission", "webhook", "kubernetes", "openshift", "policy", "json-patch"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["admissionguard"]

[tool.pytest.ini_options]
addopts = "-ra"
