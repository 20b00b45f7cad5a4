from setuptools import setup, find_packages

setup(
    name="songmap",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "tenacity",
        "pyyaml",
        "loguru",
        "python-dotenv",
        "networkx",
        "redis",
        "neo4j",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
