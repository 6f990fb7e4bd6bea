from setuptools import setup, find_packages

setup(
    name="fftbench",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "numpy>=1.20.0",
        "scipy>=1.6.0",
        "pyfftw>=0.12.0",
        "psutil>=5.6.0",
    ],
    extras_require={
        "gpu": ["cupy-cuda12x"],
        "dev": ["pytest", "pytest-cov", "black", "flake8"],
        "bench": ["tabulate"],
    },
    python_requires=">=3.8",
    description="Benchmark harness for FFT libraries (FFTW, numpy, scipy, cuFFT)",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Topic :: Scientific/Engineering",
        "Topic :: System :: Benchmark",
    ],
)
