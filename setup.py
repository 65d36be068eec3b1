from setuptools import find_packages, setup

setup(
    name="adaptor_swap",
    version="0.1.0",
    description="Atomic swaps of signed Nostr-style messages using BIP340 adaptor signatures",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "structlog>=23.0.0",
        "ecdsa>=0.18.0",
        "cryptography>=41.0.0",
        "aiosqlite>=0.19.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "click>=8.1.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.11.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "adaptor-swap=adaptor_swap.cli:main",
        ],
    },
)
