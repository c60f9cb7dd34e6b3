#!/usr/bin/env python
"""Setup script for the MCP Bridge server."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

setup(
    name="mcp-bridge",
    version="0.1.0",
    author="MDMAI Project",
    description="MCP bridge that installs, supervises and proxies child MCP servers",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/Raudbjorn/MDMAI",
    packages=find_packages(where=".", include=["src*", "config*"]),
    package_dir={"": "."},
    python_requires=">=3.10",
    install_requires=[
        # Core MCP dependencies
        "mcp>=1.10.0,<2",

        # Child server transports
        "httpx>=0.25.0",

        # Web Server (HTTP transport of the front server)
        "uvicorn>=0.23.0",

        # Configuration and models
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",

        # Utilities
        "aiofiles>=23.0.0",
        "returns>=0.22.0",

        # Logging and Monitoring
        "structlog>=23.0.0",
        "rich>=13.0.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-timeout>=2.1.0",
            "hypothesis>=6.80.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "isort>=5.12.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-timeout>=2.1.0",
            "hypothesis>=6.80.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mcp-bridge=src.bridge.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    keywords="mcp bridge model-context-protocol containers",
    project_urls={
        "Bug Reports": "https://github.com/Raudbjorn/MDMAI/issues",
        "Source": "https://github.com/Raudbjorn/MDMAI",
    },
)
