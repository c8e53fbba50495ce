#!/usr/bin/env python3

# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Setup configuration for pagestore_common package.

This shared library provides utilities for the page store Lambda functions:
- URL canonicalization and fingerprints
- Sitemap expansion
- Snapshot capture and caching (S3 + DynamoDB)
- Batch capture and scan queue tracking
- Tenant configuration, auth claims and logging helpers
"""

from setuptools import find_packages, setup

setup(
    name="pagestore_common",
    version="0.1.0",
    description="Shared utilities for page store Lambda functions",
    packages=find_packages(),
    python_requires=">=3.11",
    install_requires=[
        "boto3>=1.34.0",
        # Fetching and SPA detection
        "httpx>=0.27.0",
        "beautifulsoup4>=4.12.0",
        "lxml>=5.0.0",
    ],
    extras_require={
        # Rendered captures and screenshots (Playwright layer)
        "render": ["playwright>=1.40.0"],
        "test": ["pytest>=7.4.0", "moto[dynamodb,s3]>=5.0.0"],
    },
    author="Development Team",
    license="MIT-0",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
)
