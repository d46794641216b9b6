"""
Setup script for the Carbon LULC library.
"""

from setuptools import setup, find_packages
import os

# Read the README file
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return "Carbon LULC Library"

# Read requirements
def read_requirements():
    requirements_path = os.path.join(os.path.dirname(__file__), 'requirements.txt')
    if os.path.exists(requirements_path):
        with open(requirements_path, 'r', encoding='utf-8') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]
    return []

setup(
    name="carbon_lulc",
    version="0.1.0",
    author="GIS Carbon AI Team",
    author_email="muh.firdausiqbal@gmail.com",
    description="Sentinel-2 land cover classification, biomass and CO2eq estimation with zonal statistics",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["carbon_lulc", "carbon_lulc.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: GIS",
    ],
    python_requires=">=3.9",
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=7.4.0",
        ],
    },
    include_package_data=True,
    package_data={
        "carbon_lulc": [
            "config/*.json",
            "config/*.yaml",
        ],
    },
    zip_safe=False,
)
