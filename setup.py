from pathlib import Path

from setuptools import find_packages, setup

version = (Path(__file__).parent / "ftpdemo/VERSION").read_text("ascii").strip()


install_requires = [
    "Twisted>=21.7.0",
    "zope.interface>=5.1.0",
]
extras_require = {
    "test": [
        "pytest",
        "pytest-twisted",
        "testfixtures<12",
    ],
}


setup(
    name="ftpdemo",
    version=version,
    description="A small sandboxed FTP server built on Twisted",
    long_description=open("README.rst", encoding="utf-8").read(),
    license="BSD",
    packages=find_packages(exclude=("tests", "tests.*")),
    package_data={"ftpdemo": ["VERSION"]},
    include_package_data=True,
    zip_safe=False,
    entry_points={"console_scripts": ["ftpdemo = ftpdemo.cmdline:execute"]},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Framework :: Twisted",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: POSIX",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Internet :: File Transfer Protocol (FTP)",
    ],
    python_requires=">=3.9",
    install_requires=install_requires,
    extras_require=extras_require,
)
