"""
Setup script for lernzeit-engine.

The adaptive content selection engine of the lernzeit learning app,
where solved exercises turn into screen-time rewards. It decides which
exercise template a child sees next:

1. Session tracking - no template is repeated within a play session
2. Template rotation - weighted quality / freshness / difficulty / diversity
3. Adaptive difficulty - per-learner level driven by performance and feedback
4. Question quality - dimension scoring and rule-based optimization

The 'lernzeit' command offers quality checks and template pool maintenance.
"""

from setuptools import find_packages, setup

setup(
    name="lernzeit-engine",
    version="0.4.0",
    description="Adaptive content selection engine for the lernzeit learning app",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="lernzeit",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "lernzeit=lernzeit.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning adaptive-difficulty education templates quality",
)
