#!/usr/bin/env python3
from setuptools import setup, find_packages

setup(
    name="mcp-vehicle-tracker",
    version="0.1.0",
    description="MCP server that animates a vehicle along a route on a live map",
    author="Your Name",
    author_email="your.email@example.com",
    # Explicitly define packages to include
    packages=find_packages(exclude=["tests", "tests.*"]),
    # Include our templates, static files and sample route as package data
    package_data={
        "vehicle_tracker": ["templates/*", "static/*", "data/*.json"],
    },
    include_package_data=True,
    # Define dependencies
    install_requires=[
        "flask>=3.1.0",
        "psycopg2>=2.9.10",
        "fastmcp",
        "mcp>=1.2.0,<2",
        "requests>=2.31",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    python_requires=">=3.10",
)
