"""Setup configuration for agentctl."""

from setuptools import setup, find_packages

setup(
    name="agentctl",
    version="1.0.0",
    description="CLI for creating, inspecting and controlling scheduled launchd jobs",
    packages=find_packages(include=["agentctl", "agentctl.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "agentctl=agentctl.cli:cli",
        ],
    },
    python_requires=">=3.9",
)
