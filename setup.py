"""Setup configuration for mongo-harness package."""

from setuptools import setup, find_packages
import sys
from pathlib import Path

# Ensure Python version compatibility
if sys.version_info < (3, 9):
    sys.exit("Python 3.9 or higher is required")


def read_long_description():
    """Read long description from README."""
    readme_file = Path(__file__).parent / "README.md"
    if not readme_file.exists():
        return "Process, session and assertion harness for mongod-compatible servers"

    with open(readme_file, "r", encoding="utf-8") as f:
        return f.read()


def get_version():
    """Get version from package."""
    version_file = Path(__file__).parent / "src" / "mongo_harness" / "__version__.py"
    if version_file.exists():
        namespace = {}
        with open(version_file) as f:
            exec(f.read(), namespace)
        return namespace["__version__"]
    return "0.0.0"


setup(
    name="mongo-harness",
    version=get_version(),
    description="Process, session and assertion harness for mongod-compatible servers",
    long_description=read_long_description(),
    long_description_content_type="text/markdown",

    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    package_dir={"": "src"},

    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Testing",
        "Topic :: Database",
    ],

    python_requires=">=3.9",

    install_requires=[
        "click>=8.0.0",
        "pyyaml>=6.0",
        "psutil>=5.8.0",
        "structlog>=22.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "pymongo>=4.0.0",
    ],

    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=1.0.0",
            "isort>=5.10.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "pytest-mock>=3.10.0",
            "faker>=18.0.0",
        ],
    },

    entry_points={
        "console_scripts": [
            "mongo-harness=mongo_harness.main:cli",
        ],
    },

    keywords="mongodb test harness process tls authentication",
)
