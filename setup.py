#!/usr/bin/env python3
# =============================================================================
#  unsafe-paths: setup.py
#
#  Build-system and pytest settings live in pyproject.toml.
#  Package metadata lives here:
#
#    1.  the version is read from unsafe_paths/__init__.py,
#    2.  install requirements are read from requirements.txt.
#
#  Typical use:
#      pip install -e ".[test]"
#      python -m pytest
# =============================================================================

from __future__ import annotations

import re
from pathlib import Path

from setuptools import setup, find_packages

# ---------------------------------------------------------------------------
#  Read version from the package so we have a single source of truth.
# ---------------------------------------------------------------------------
_HERE = Path(__file__).resolve().parent


def _read_version() -> str:
    """Extract ``__version__`` from unsafe_paths/__init__.py."""
    init = _HERE / "unsafe_paths" / "__init__.py"
    text = init.read_text(encoding="utf-8")
    match = re.search(r'^__version__\s*=\s*"([^"]+)"', text, re.MULTILINE)
    if match:
        return match.group(1)
    return "0.0.0"


def _read_long_description() -> str:
    """Read README.md for the long description."""
    readme = _HERE / "README.md"
    if readme.exists():
        return readme.read_text(encoding="utf-8")
    return ""


def _read_requirements() -> list[str]:
    """Read requirements.txt if it exists."""
    req_file = _HERE / "requirements.txt"
    if req_file.exists():
        lines = req_file.read_text(encoding="utf-8").splitlines()
        return [
            ln.strip()
            for ln in lines
            if ln.strip() and not ln.strip().startswith("#")
        ]
    return []


setup(
    name="unsafe-paths",
    version=_read_version(),
    description=(
        "Static analysis of Rust sources: call chains from safe public "
        "functions into unsafe code."
    ),
    long_description=_read_long_description(),
    long_description_content_type="text/markdown",
    license="MIT",
    author="unsafe-paths contributors",
    python_requires=">=3.10",
    packages=find_packages(
        include=[
            "unsafe_paths",
            "unsafe_paths.*",
        ],
        exclude=[
            "tests",
            "tests.*",
        ],
    ),
    install_requires=_read_requirements(),
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
        ],
    },

    # ── console entry point ────────────────────────────────────────────
    #  `python -m unsafe_paths` works as well via unsafe_paths/__main__.py
    entry_points={
        "console_scripts": [
            "unsafe-paths=unsafe_paths.cli:main",
        ],
    },

    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Programming Language :: Rust",
        "Topic :: Software Development :: Quality Assurance",
        "Topic :: Security",
    ],
    keywords=[
        "rust",
        "unsafe",
        "static-analysis",
        "call-graph",
        "tree-sitter",
        "program-analysis",
    ],
    zip_safe=False,
)
