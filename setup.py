from setuptools import setup, find_packages

setup(
    name="phoenix-infra",
    version="0.3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "typer",
        "cli-core-yo<1.2",
        "rich",
        "pydantic>=2",
        "PyYAML",
        "boto3",
        "botocore",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "phoenix=phoenix_infra.cli:main",
        ],
    },
)
