"""
Proxyable setup configuration.

This module configures the installation and distribution of Proxyable, an
interception kernel for Python objects with pluggable capabilities (audit
logging, access control, invariants, tenant views, transactions, record/replay
and call contracts).

The package is pure Python and has no runtime dependencies on Python 3.11+.
Older interpreters pull in ``tomli`` so TOML access policies can be loaded.
"""

from setuptools import setup, find_packages


# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "License :: OSI Approved :: MIT License",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.8",
    "Programming Language :: Python :: 3.9",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Security",
]

setup(
    name="proxyable",
    version="0.1.0",
    author="Proxyable Contributors",
    description="Interception kernel for Python objects with composable capabilities",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*", "examples", "examples.*"]),
    package_data={"proxyable": ["version.txt"]},
    classifiers=classifiers,
    python_requires=">=3.8",
    install_requires=[
        'tomli>=1.1.0; python_version < "3.11"',
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "black>=23.0",
            "flake8>=6.0",
            "mypy>=1.0",
            "isort>=5.0",
        ],
    },
    keywords="proxy interception capabilities access-control audit",
    zip_safe=False,
)
