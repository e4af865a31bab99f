"""
oniontransfer
Stream files and directories over one TCP connection
"""
from setuptools import setup, find_packages

setup(
    name="oniontransfer",
    version="1.0.0",
    description="Point-to-point file and directory transfer over a single byte stream",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.10",
    install_requires=[],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "oniontransfer=oniontransfer.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Networking",
        "Programming Language :: Python :: 3.10",
    ],
)
