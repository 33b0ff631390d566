from setuptools import setup, find_packages

setup(
    name="irlsmap",
    version="0.1.0",
    description="Multi-frame super-resolution by MAP estimation with iteratively reweighted least squares",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "Pillow>=9.1.0",
        "scipy>=1.11.0",
        "click>=8.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "irlsmap=irlsmap.cli:main",
        ],
    },
    python_requires=">=3.8",
)
