"""Setup script for the VPS deployer."""

from setuptools import find_packages, setup

with open("requirements.txt") as f:
    requirements = f.read().splitlines()

setup(
    name="vps-deploy",
    version="1.0.0",
    description="Selective Docker Compose deployments to a VPS over SSH",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
        ],
    },
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "vps-deploy=vps_deploy.cli:main",
        ],
    },
)
