from setuptools import setup, find_packages

setup(
    name="cellar",
    version="0.1.0",
    description="Formula resolution, bottle selection and build orchestration engine.",
    license="GPL-3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "rich>=13.0.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "cellar=cellar.cellar:main",
        ],
    },
)
