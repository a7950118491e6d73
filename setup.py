from setuptools import find_packages, setup

setup(
    name="kinetolab",
    version="0.1.0",
    description="Direct transcription of multibody optimal control problems into sparse NLPs",
    author="KinetoLab Authors",
    packages=find_packages(include=["kinetolab", "kinetolab.*"]),
    install_requires=[
        "numpy>=1.22.0",
        "matplotlib>=3.1.0",
        "scipy>=1.8.0",
        "casadi>=3.6.0",  # Tapes, derivatives and the IPOPT backend
        "pandas>=1.0.0",  # Used for data export
    ],
    extras_require={
        "ipopt": ["cyipopt>=1.3"],  # IPOPT driven by the exact-derivative callbacks
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Mathematics",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    keywords="optimal control, trajectory optimization, direct transcription, multibody dynamics",
)
