from setuptools import setup, find_packages

setup(
    name="SimReg",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "statsmodels",
        "joblib",
    ],
    extras_require={
        "progress": ["tqdm"],
        "test": ["pytest", "tqdm"],
    },
    description="Simulation-based power analysis for regression models",
)
