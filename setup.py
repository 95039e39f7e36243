"""
Setup script for chunk_runner package
"""
from setuptools import setup, find_packages
from pathlib import Path

readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

requirements_path = Path(__file__).parent / "requirements.txt"
if requirements_path.exists():
    requirements = [
        line.strip()
        for line in requirements_path.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.startswith("#")
    ]
else:
    requirements = [
        "markdown-it-py>=3.0.0",
        "pyyaml>=6.0",
    ]

setup(
    name="chunk_runner",
    version="1.0.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="Discover, execute and render code chunks embedded in markdown documents",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
        "plot": [
            "matplotlib>=3.7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "chunk-runner=chunk_runner.cli.run_cli:main",
        ],
    },
    include_package_data=True,
    keywords="markdown code-chunks literate-programming execution",
)
