import io
import os
import re

from setuptools import find_packages, setup


with io.open("flask_sharing/__init__.py", "rt", encoding="utf8") as f:
    version = re.search(r"__version__ = \"(.*?)\"", f.read()).group(1)


def fpath(name):
    return os.path.join(os.path.dirname(__file__), name)


def read(fname):
    with open(fpath(fname)) as f:
        return f.read()


def desc():
    return read("README.rst")


setup(
    name="Flask-Sharing",
    version=version,
    license="BSD",
    description=(
        "Project sharing for Flask applications."
        " Collaborator invitations, permission levels, quota and time bounded"
        " share links, presence tracking and concurrent edit warnings."
    ),
    long_description=desc(),
    long_description_content_type="text/x-rst",
    packages=find_packages(exclude=["tests*"]),
    include_package_data=True,
    zip_safe=False,
    platforms="any",
    install_requires=[
        "click>=8, <9",
        "email_validator>=2.0",
        "Flask>=2, <4",
        "Flask-Limiter>3,<4",
        "Flask-Login>=0.6, <0.7",
        "Flask-Mail>=0.9.1, <1.0.0",
        "Flask-SQLAlchemy>=3, <4",
        "marshmallow>=3.18.0, <5",
        "SQLAlchemy>=2.0, <3",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Framework :: Flask",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.9",
)
