"""Install the account flow metrics package."""

from setuptools import setup, find_packages

setup(
    name='account-metrics',
    version='0.1.0',
    packages=find_packages(exclude=['*tests*']),
    python_requires='>=3.8',
    install_requires=[
        "redis>=5.0.1",
        "python-json-logger>=3.1",
        "werkzeug",
    ],
    extras_require={
        'test': [
            "pytest",
            "hypothesis",
        ]
    },
    zip_safe=False
)
