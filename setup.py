"""Set-up file for blackoil for installations using ``pip install .``"""
from setuptools import find_packages, setup


with open("requirements.txt") as f:
    required = f.read().splitlines()


setup(
    name="blackoil",
    version="0.1.0",
    license="GPL",
    keywords=["reservoir simulation black-oil fully implicit"],
    install_requires=required,
    extras_require={
        "test": ["pytest"],
        "mpi": ["mpi4py"],
    },
    description="Core of a fully implicit three-phase black-oil reservoir simulator",
    platforms=["Linux", "Windows", "Mac OS-X"],
    package_data={
        "blackoil": ["py.typed"],
    },
    packages=find_packages("src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    zip_safe=False,
)
