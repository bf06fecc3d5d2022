"""Setup script for Interaction Tracker package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README if it exists
readme_file = Path(__file__).parent / "DESIGN.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="interaction-tracker",
    version="0.1.0",
    description="Camera-sampled owner/target interaction tracking with face recognition",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Interaction Tracker Team",
    packages=find_packages(exclude=["tests*", "docs*"]),
    python_requires=">=3.9",
    install_requires=[
        "insightface>=0.7.3",
        "onnxruntime>=1.16.3",
        "opencv-python>=4.9.0",
        "numpy>=1.26.0",
        "pandas>=2.2.0",
        "pyarrow>=15.0.0",
        "pyyaml>=6.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black",
            "flake8",
            "mypy",
        ],
        "emotion": [
            "deepface>=0.0.93",
        ],
    },
    entry_points={
        "console_scripts": [
            "interaction-enroll=scripts.build_enrollment:main",
            "interaction-run=scripts.run_interaction:main",
            "interaction-export=scripts.export_totals:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
