"""Setup configuration for RTDB Profiler."""

from setuptools import find_packages, setup

setup(
    name="rtdb-profiler",
    version="0.3.0",
    description="Realtime Database profiler service — run, parse and ship profiler output",
    author="RTDB Profiler maintainers",
    python_requires=">=3.11",
    packages=find_packages(where="src", include=["rtdb_profiler*"]),
    package_dir={"": "src"},
    install_requires=[
        "httpx>=0.27.0",
        "pydantic>=2.6.0",
        "pydantic-settings>=2.1.0",
    ],
    entry_points={
        "console_scripts": [
            "rtdb-profiler=rtdb_profiler.cli:cli_entry",
        ],
    },
    extras_require={
        "dev": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "respx>=0.21.0",
            "python-dotenv>=1.0.0",
        ],
    },
)
