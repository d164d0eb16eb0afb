from setuptools import find_packages
from setuptools import setup

setup(
    name="laser-contacts",
    version="0.1.0",
    description="Cell-scoped pairwise transmission and commute assignment for LASER-style agent based models.",
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    include_package_data=True,
    install_requires=[
        "click",
        "numba",
        "numpy",
        "tqdm",
    ],
    extras_require={
        "test": [
            "pytest",
            "scipy",
        ],
    },
    entry_points={
        "console_scripts": [
            "laser-contacts = laser_contacts.cli:main",
        ]
    },
)
