[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stakesim"
version = "0.20.0"
description = "In-memory simulation of staking and distribution keepers for testing code that delegates, slashes and withdraws rewards"
requires-python = ">=3.10"
dependencies = []
keywords = ["staking", "delegation", "rewards", "slashing", "simulation", "testing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["stakesim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
