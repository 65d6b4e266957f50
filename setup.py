from setuptools import setup, find_packages
import os

# Read the README file for long description
def read_readme():
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()

setup(
    name="umap-torch",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),

    # Core dependencies
    install_requires=[
        "numpy>=1.21.0",
        "torch>=2.0.0",
        "pykeops>=2.1.0",
        "loguru>=0.6.0",
        "scipy>=1.7.0",
        "scikit-learn>=1.0.0",
    ],

    # Python versioning
    python_requires=">=3.8",

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-xdist>=3.0.0",
            "pytest-timeout>=2.1.0",
            "black>=22.0.0",
            "isort>=5.10.0",
            "flake8>=4.0.0",
            "pylint>=2.15.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-xdist>=3.0.0",
            "pytest-timeout>=2.1.0",
        ],
    },

    # Metadata
    description="PyTorch accelerated Uniform Manifold Approximation and Projection (UMAP)",
    long_description=read_readme() if os.path.exists("README.md") else "",
    long_description_content_type="text/markdown",

    # Classifiers
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Scientific/Engineering :: Information Analysis",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
        "Environment :: GPU :: NVIDIA CUDA",
    ],

    # Keywords for PyPI
    keywords="dimensionality-reduction machine-learning gpu cuda pytorch embedding umap manifold-learning",

    # License
    license="MIT",

    include_package_data=True,
    zip_safe=False,
)
