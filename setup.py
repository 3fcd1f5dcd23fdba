"""Install the idhub identity and session service."""

from setuptools import setup, find_packages

setup(
    name='idhub',
    version='0.1.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    package_data={'idhub': ['config.py']},
    python_requires='>=3.8',
    install_requires=[
        "flask",
        "sqlalchemy>=2.0",
        "psycopg2-binary",
        "cryptography",
        "pytz",
        "pydantic>=2",
        "python-json-logger",
        "redis",
        "fakeredis",
        "retry",
    ],
    extras_require={
        'test': [
            "pytest",
            "hypothesis",
            "mimesis",
        ]
    },
    zip_safe=False
)
