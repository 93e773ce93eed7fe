
from setuptools import setup

# load version without importing
import re
src = open("deptca/__init__.py", "r").read()
version = re.search(r"""^__version__\s*=\s*['"]([^'"]+)['"]""", src, re.M).group(1)

# load description
longdesc = open("README.rst", "r").read().split("\nCommands\n")[0].strip()
desc = longdesc.splitlines()[0].split("-", 1)[1].strip()

setup(
    name="deptca",
    version=version,
    description=desc,
    long_description=longdesc,
    license="ISC",
    packages=["deptca"],
    entry_points={
        "console_scripts": ["deptca=deptca.tool:main"],
    },
    zip_safe=True,
    python_requires=">=3.8",
    install_requires=["cryptography>=3.1"],
    extras_require={"test": ["pytest"]},
    keywords=["x509", "tls", "ssl", "certificate", "authority", "crl", "revocation", "command-line"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: ISC License (ISCL)",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3",
        "Topic :: Security :: Cryptography",
        "Topic :: System :: Systems Administration",
        "Topic :: Utilities",
    ]
)
