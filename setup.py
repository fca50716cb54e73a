# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for the ToolVault tool execution orchestrator
"""

from setuptools import setup, find_packages

setup(
    name="toolvault-orchestrator",
    version="1.0.0",
    description="Isolated tool execution and workflow orchestration for ToolVault",
    author="Jason Cafarelli",
    packages=find_packages(include=["toolvault", "toolvault.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "pyyaml>=6.0",
        "aiofiles>=23.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
)
