[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tinypb"
version = "0.1.0"
description = "Descriptor-driven decoding of the Protocol Buffers wire format"
requires-python = ">=3.10"
dependencies = []
keywords = ["protobuf", "protocol-buffers", "decoding", "varint", "wire-format", "serialization"]
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
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tinypb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
files = ["tinypb"]
warn_unused_ignores = true
