#!/usr/bin/env python3

# Copyright 2021 - 2022 Matrix Origin
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Packaging for spannerlink-python-sdk.

Runtime dependencies live in requirements.txt; the version is the one
declared in spannerlink/__init__.py.
"""

import os
import re

from setuptools import find_packages, setup

HERE = os.path.abspath(os.path.dirname(__file__))

TEST_REQUIRES = ["pytest>=6.0", "pytest-cov>=3.0"]
LINT_REQUIRES = ["black>=22.0", "flake8>=4.0", "isort>=5.0", "mypy>=0.950"]


def read(*parts):
    with open(os.path.join(HERE, *parts), encoding="utf-8") as f:
        return f.read()


def find_version():
    found = re.search(r'^__version__\s*=\s*["\']([^"\']+)["\']', read("spannerlink", "__init__.py"), re.M)
    if not found:
        raise RuntimeError("spannerlink/__init__.py does not define __version__")
    return found.group(1)


def install_requires():
    lines = (line.strip() for line in read("requirements.txt").splitlines())
    return [line for line in lines if line and not line.startswith("#")]


setup(
    name="spannerlink-python-sdk",
    version=find_version(),
    author="SpannerLink Team",
    description="Session, transaction and batch execution management for distributed SQL databases reached over RPC",
    long_description=read("README.md"),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=install_requires(),
    extras_require={
        "test": TEST_REQUIRES,
        "dev": TEST_REQUIRES + LINT_REQUIRES,
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Database :: Front-Ends",
    ],
    keywords="spanner rpc sessions transactions batch-dml ddl retry sqlalchemy",
    zip_safe=False,
)
