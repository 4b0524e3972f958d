from setuptools import setup, find_namespace_packages

setup(
    name="hashwatch_client",
    version="0.1.0",
    packages=find_namespace_packages(include=["hashwatch_client*"]),
    install_requires=["httpx>=0.26.0"],
    entry_points={
        "console_scripts": [
            "hashwatch=hashwatch_client.cli:main",
        ],
    },
)
