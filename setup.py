"""
Setup script for propensitykit.
"""

from setuptools import setup, find_packages

setup(
    name="propensitykit",
    version="0.1.0",
    description="Propensity-score weighting, balance diagnostics and doubly-robust treatment effect estimation",
    author="propensitykit contributors",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.22.0",
        "pandas>=1.3.0",
        "scipy>=1.8.0",
        "scikit-learn>=1.1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering",
    ],
    python_requires=">=3.10",
)
