#!/usr/bin/env python

# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Setuptools installer for txlocalnames.
"""

import pathlib
import re

import setuptools

setuptools.setup(
    name="txlocalnames",
    use_incremental=True,
    setup_requires=["incremental >= 21.3.0"],
    description=(
        "LLMNR and NetBIOS Name Service clients and servers for Twisted"
    ),
    license="MIT",
    # Munge links of the form `NEWS <NEWS.rst>`_ to point at the appropriate
    # location in the source tree so that they function when the long
    # description is displayed on PyPI.
    long_description=re.sub(
        r"`([^`]+)\s+<(?!https?://)([^>]+)>`_",
        r"`\1 <\2>`_",
        pathlib.Path("README.rst").read_text(encoding="utf8"),
        flags=re.I,
    ),
    long_description_content_type="text/x-rst",
    package_dir={"": "src"},
    packages=setuptools.find_packages("src"),
    python_requires=">=3.7",
    install_requires=[
        "Twisted >= 21.2.0",
        "zope.interface >= 4.4.2",
        "attrs >= 19.2.0",
        "Automat >= 0.8.0",
        "constantly >= 15.1",
        "incremental >= 21.3.0",
    ],
    entry_points={
        "console_scripts": [
            "txlocalnames = txlocalnames.__main__:main",
        ],
    },
    zip_safe=False,
)
