from setuptools import setup

with open("mitoken/version.py") as f:
    exec(f.read())

setup(
    name="python-mitoken",
    version=__version__,  # type: ignore # noqa: F821
    description="Python API for extracting device tokens from the Xiaomi cloud",
    url="https://github.com/python-mitoken/python-mitoken",
    author="",
    author_email="",
    license="GPLv3",
    packages=["mitoken", "mitoken.transports", "mitoken.cli"],
    install_requires=[
        "aiohttp>=3",
        "yarl",
        "mashumaro>=3.11",
        "cryptography>=43",
        "asyncclick>=8.1.7",
        "rich",
    ],
    extras_require={
        "speedups": ["orjson>=3.9.1"],
        "tests": [
            "pytest",
            "pytest-asyncio",
            "pytest-mock",
            "pytest-freezer",
            "freezegun",
            "multidict",
        ],
    },
    python_requires=">=3.11",
    entry_points={"console_scripts": ["mitoken=mitoken.cli:cli"]},
    zip_safe=False,
)
