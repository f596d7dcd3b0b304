from setuptools import setup, find_packages

setup(
    name="relaykit",
    version="0.1.0",
    packages=find_packages(include=["relay", "relay.*"]),
    python_requires=">=3.11",
    install_requires=[
        "httpx",
        "pydantic",
        "pydantic-settings",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "respx",
        ],
    },
)
