"""Setup script for the agentrelay package."""

from setuptools import setup, find_packages

setup(
    name="agentrelay",
    version="0.1.0",
    packages=find_packages(include=["agentrelay", "agentrelay.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=23.1",
        "prometheus-client>=0.17",
        "httpx>=0.25",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
        ],
    },
    description="agentrelay - multi-agent handoff, escalation and tool-resolution core",
    author="agentrelay Team",
)
