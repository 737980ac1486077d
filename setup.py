"""Setup script for Eid RAG Server package."""
from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="eid-rag-server",
    version="0.1.0",
    author="Eid RAG Server Contributors",
    description="Question answering grounded in trusted Islamic websites (Gemini + Qdrant) with a Flask API",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "flask>=3.0.0",
        "flask-cors>=4.0.0",
        "requests>=2.31.0",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "langchain-core>=0.1.0",
        "pydantic>=2.0.0",
        "beautifulsoup4>=4.12.0",
        "tqdm>=4.66.0",
        "qdrant-client>=1.10.0",
    ],
    extras_require={
        "dev": ["pytest", "black", "flake8"],
    },
    entry_points={
        "console_scripts": [
            "eid-rag=eid_rag_server.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="rag gemini qdrant flask crawler search",
)
