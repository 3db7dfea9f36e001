"""
Installs missinghe
"""

import re

from setuptools import find_packages, setup


# Get package information
def get_package_info():
    """
    Gets version information for the installation.
    """
    # Set up variables
    package_version = None

    # Open the file containing version info
    with open("missinghe/__init__.py", "r", encoding="utf-8") as file:
        for line in file:
            # Check version
            if match_obj := re.match(r"__version__.+([0-9]+\.[0-9]+\.[0-9]+)", line):
                package_version = match_obj.group(1)

    # Checks on variables
    if package_version is None:
        raise IOError("Could not find information on version.")

    return package_version


# Run setup
setup(
    name="missinghe",
    version=get_package_info(),
    description="Bayesian cost-effectiveness analysis with missing data, using Stan",
    packages=find_packages(include=["missinghe", "missinghe.*"]),
    python_requires=">=3.10",
    install_requires=[
        "arviz>=0.17,<1.0",
        "cmdstanpy>=1.2",
        "holoviews",
        "hvplot",
        "numpy",
        "pandas",
        "scipy",
        "typeguard>=4",
        "xarray",
    ],
    extras_require={"test": ["matplotlib", "pytest"]},
)
