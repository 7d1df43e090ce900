#!/usr/bin/env python
""" A REST resource layer over async SqlAlchemy, driven by JSON query options """

from setuptools import setup, find_packages

setup(
    name='restifysql',
    version='1.0.0',
    author='Mark Vartanyan',
    author_email='kolypto@gmail.com',

    url='https://github.com/kolypto/py-restifysql',
    license='BSD',
    description=__doc__,
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    keywords=['sqlalchemy', 'rest', 'asyncio'],

    packages=find_packages(exclude=('tests', 'tests.*')),
    scripts=[],
    entry_points={},

    python_requires='>= 3.8',
    install_requires=[
        'sqlalchemy[asyncio] >= 2.0',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-cov',
            'aiosqlite',
            'nox',
        ],
    },
    include_package_data=True,

    platforms='any',
    classifiers=[
        # https://pypi.python.org/pypi?%3Aaction=list_classifiers
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Framework :: AsyncIO',
        'Topic :: Software Development :: Libraries :: Python Modules',
    ],
)
