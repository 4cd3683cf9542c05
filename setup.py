#!/usr/bin/env python

# ekiden: async trading client for the ekiden exchange
# Copyright (C) 2025-present  ekiden contributors

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.

# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

from setuptools import setup, find_packages

with open('README.rst', encoding='utf-8') as f:
    readme = f.read()


setup(
    name="ekiden",
    version='0.1.0',
    description='async trading client for the ekiden exchange.',
    long_description=readme,
    license='AGPLv3',
    author='ekiden contributors',
    maintainer='ekiden contributors',
    platforms=['linux'],
    packages=find_packages(include=['ekiden', 'ekiden.*']),
    entry_points={
        'console_scripts': [
            'ekiden = ekiden.cli:cli',
        ]
    },
    install_requires=[
        'tomlkit',
        'click',
        'colorlog',
        'pygments',
        'msgspec',  # performant structs and json codec

        # async
        # asks' anyio 3 trio backend needs ``trio.MultiError``
        'trio >= 0.22, < 0.24',
        'trio-websocket',
        'wsproto',
        'asks',

        # ed25519 signing
        'pynacl',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    tests_require=['pytest'],
    python_requires=">=3.11",
    keywords=[
        "async",
        "trading",
        "finance",
        "exchange",
    ],
    classifiers=[
        'Development Status :: 3 - Alpha',
        'License :: OSI Approved :: GNU Affero General Public License v3',
        'Operating System :: POSIX :: Linux',
        "Programming Language :: Python :: Implementation :: CPython",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.11",
        'Intended Audience :: Financial and Insurance Industry',
        'Intended Audience :: Developers',
    ],
)
