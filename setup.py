"""Setup configuration for chapterchat package."""
from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="chapterchat",
    version="0.1.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="Chat about long YouTube transcripts within a model's context window",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/chapterchat",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.9",
    install_requires=[
        "openai>=1.40.0",
        "tiktoken>=0.7.0",
        "python-dotenv>=1.0.0",
        "youtube-transcript-api>=1.0.0",
        "pytube>=15.0.0",
        "structlog>=24.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "chapterchat=chapterchat.main:main",
        ],
    },
)
