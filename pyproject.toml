[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "heapscribe"
version = "1.0.0"
description = "Record heap allocation events as a compact line-based trace and read them back"
requires-python = ">=3.10"
dependencies = []
keywords = ["heap", "profiler", "allocation", "memory", "trace", "debugging"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
heapscribe-env = "heapscribe.env:main"

[tool.hatch.build.targets.wheel]
packages = ["heapscribe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
