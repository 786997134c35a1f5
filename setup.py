"""Setup script for relay-resilience"""

from setuptools import setup, find_packages

setup(
    name="relay-resilience",
    version="0.1.0",
    packages=find_packages(where="python-glue", exclude=["tests", "tests.*"]),
    package_dir={"": "python-glue"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "httpx>=0.25.0",
        "redis>=5.0.0",
        "toml>=0.10.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
)
