"""Setup configuration for LabPulse."""

from setuptools import find_packages, setup

setup(
    name="labpulse",
    version="0.1.0",
    description="FHIR bulk export lab result reports with reference-range classification",
    python_requires=">=3.11",
    packages=find_packages(where="src", include=["labpulse*"]),
    package_dir={"": "src"},
    install_requires=[
        "httpx>=0.27.0",
        "pydantic>=2.6.0",
        "pydantic-settings>=2.1.0",
        "PyJWT[crypto]>=2.8.0",
    ],
    entry_points={
        "console_scripts": [
            "labpulse=labpulse.cli:cli_entry",
        ],
    },
    extras_require={
        "dev": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
            "respx>=0.21.0",
            "cryptography>=41.0.0",
        ],
    },
)
