[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "roverbrain"
version = "0.1.0"
description = "Control logic for a small rover: sensor polling, motor ramping and an autonomous follow state machine"
requires-python = ">=3.10"
dependencies = []
keywords = ["robotics", "rover", "state machine", "motion control", "sensors", "diagnostics"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["roverbrain"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
