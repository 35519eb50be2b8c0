#!/usr/bin/env python3
"""Setup script for contract-bench."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

setup(
    name="contract-bench",
    version="0.1.0",
    author="contract-bench developers",
    description="Weight benchmark harness for WebAssembly smart contracts",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["server"],
    package_data={
        "contract_bench": ["config.json"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Testing",
    ],
    python_requires=">=3.8",
    install_requires=[
        "flask>=2.2",  # Benchmark job server
        "pycryptodome>=3.15",  # Keccak-256 hasher
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "mypy>=1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "contract-bench=contract_bench.cli:main",
        ],
    },
)
