[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vinephylo"
version = "0.1.0"
description = "Building blocks for variational phylogenetic inference with node embeddings and a CRISPR lineage-tracing likelihood"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "phylogenetics",
    "variational inference",
    "neighbor joining",
    "hyperbolic embedding",
    "crispr",
    "lineage tracing",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Bio-Informatics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vinephylo"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
