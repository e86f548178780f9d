from setuptools import setup, find_packages

setup(
    name="grd-settlement",
    version="1.0.0",
    description="GRD Hospital Episode Settlement Engine",
    author="GRD Settlement Team",
    packages=find_packages(include=["grd_settlement", "grd_settlement.*"]),
    py_modules=["settlement_cli"],
    install_requires=[
        "pandas>=2.0.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "grd-settlement=settlement_cli:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
