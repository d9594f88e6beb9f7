#!/usr/bin/env python3
"""
Setup script for debsig-verify
"""

import re

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

with open("debsig/constants.py", "r", encoding="utf-8") as fh:
    version = re.search(r'VERSION: str = "([^"]+)"', fh.read()).group(1)

setup(
    name="debsig-verify",
    version=version,
    author="debsig-verify developers",
    description="Verify Debian binary package signatures against local policy",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Topic :: Security :: Cryptography",
        "Topic :: System :: Software Distribution",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.8",
    install_requires=requirements,
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'debsig-verify=debsig.cli.debsig_verify:main',
        ],
    },
    include_package_data=True,
)
