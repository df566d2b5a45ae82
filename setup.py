from setuptools import setup, find_packages

setup(
    name="heapspec",
    version="0.1.0",
    description="HeapSpec — heap commands, a fuel-bounded stepper, and Hoare-style proofs checked with z3",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.10",
    install_requires=[
        "z3-solver>=4.12.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "hypothesis>=6.0",
        ],
    },
)
