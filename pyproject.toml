[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bulbcore"
version = "0.1.0"
description = "Order-preserving INI reader and writer with lazy updates, plus length disassemblers for x86 and x86-64 instructions"
requires-python = ">=3.10"
dependencies = []
keywords = ["ini", "configuration", "disassembler", "x86", "x86-64", "instruction-length"]
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
    "Topic :: Software Development :: Disassemblers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bulbcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
