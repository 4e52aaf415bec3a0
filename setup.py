import os

from setuptools import find_packages, setup

# Ensure we're running in the correct directory
dir_path = os.path.dirname(os.path.realpath(__file__))
os.chdir(dir_path)

# Setup without redundant metadata. Name, version, etc. are handled by pyproject.toml.
setup(
    packages=find_packages(include=["pyptoa", "pyptoa.*"]),
    zip_safe=False,
)
