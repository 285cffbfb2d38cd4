"""terse - token-efficient shell output for AI coding assistants."""
from setuptools import setup, find_packages

setup(
    name="terse",
    version="1.0.0",
    description="Compacts shell command output for AI coding assistants",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "click>=8.1.0",
        "rich>=13.0.0",
        "pyyaml>=6.0",
        "toml>=0.10.0",
        "httpx>=0.24.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "terse=terse.cli:main",
        ],
    },
    python_requires=">=3.10",
)
