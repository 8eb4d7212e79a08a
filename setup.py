import os
import re

from setuptools import find_packages, setup


def read_version():
    path = os.path.join(os.path.dirname(__file__), "destruct", "__init__.py")
    with open(path) as f:
        return re.search(r'^__version__ = "([^"]+)"', f.read(), re.M).group(1)


setup(
    name="destruct",
    version=read_version(),
    description="Structural pattern compiler for Python values",
    packages=find_packages(exclude=["tests", "tests.*", "tools"]),
    python_requires=">=3.10",
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": [
            "destruct=destruct.cli:main",
        ],
    },
)
