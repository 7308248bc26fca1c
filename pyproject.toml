[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ipfscrawl"
version = "0.1.0"
description = "Building blocks for indexing IPFS content: document types, metadata extractors, OpenSearch and Redis indexes, caching and batched lookups."
requires-python = ">=3.11"
keywords = ["ipfs", "search", "opensearch", "redis", "indexing", "asyncio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
]
dependencies = [
    "cbor2>=5.4",
    "lz4>=4.0",
    "redis>=4.5",
    "httpx>=0.24",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "pytest-asyncio>=0.21",
    "respx>=0.20",
]

[tool.hatch.build.targets.wheel]
packages = ["ipfscrawl"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
ignore_missing_imports = true
