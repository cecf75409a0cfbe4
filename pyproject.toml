[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "smreconcile"
version = "0.1.0"
description = "Reconciliation passes that keep hyperparameter tuning jobs and models held as cluster resources in step with a managed training service"
requires-python = ">=3.10"
dependencies = []
keywords = ["reconciler", "controller", "kubernetes", "operator", "hyperparameter-tuning", "model", "finalizer"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["smreconcile"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
