from setuptools import setup, find_packages

setup(
    name="patchwise",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        # Plan / summary JSON schema validation
        "pydantic>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "patchwise=patchwise.cli:main",
        ],
    },
    author="Uday Kanth",
    description="Turns natural-language edit requests into grounded, reviewable patches.",
)
