[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lfverifier"
version = "2.0.0"
description = "Verify Logstash filter configurations by running test cases through Logstash and comparing the events it emits"
requires-python = ">=3.10"
keywords = ["logstash", "filter", "testing", "verification", "pipeline"]
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
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Logging",
]
dependencies = [
    "pyyaml>=6.0",
    "packaging>=21.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["lfverifier"]

[tool.hatch.build.targets.sdist]
include = ["lfverifier", "tests"]

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
