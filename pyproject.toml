[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "huskyapi"
version = "0.14.0"
description = "Core of a security-analysis API: PBKDF2 user authentication, environment-driven configuration, SQL query building and analysis statistics pipelines."
requires-python = ">=3.10"
keywords = [
    "security",
    "static-analysis",
    "pbkdf2",
    "postgres",
    "configuration",
    "continuous-integration",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Quality Assurance",
    "Topic :: Security",
    "Topic :: Database",
    "Typing :: Typed",
]
dependencies = [
    "pyyaml>=6.0",
    "cachetools>=5.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["huskyapi"]

[tool.hatch.build.targets.sdist]
include = ["huskyapi", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
