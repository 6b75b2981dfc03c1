[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "containerbuild"
version = "1.13.0"
description = "Build-context handling, option parsing and helper tooling for a daemonless container image builder"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = [
    "container",
    "docker",
    "dockerfile",
    "image",
    "build-context",
    "oci",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: System :: Software Distribution",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
containerbuild-release-notes = "containerbuild.release_notes:main"

[tool.hatch.build.targets.wheel]
packages = ["containerbuild"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
