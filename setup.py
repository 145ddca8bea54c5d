###############################################################################
# Copyright (c) 2018, Lawrence Livermore National Security, LLC
# Produced at the Lawrence Livermore National Laboratory
# Written by Thomas Mendoza mendoza33@llnl.gov
# LLNL-CODE-754897
# All rights reserved
#
# This file is part of vpncertd, derived from Certipy:
# https://github.com/LLNL/certipy
#
# SPDX-License-Identifier: BSD-3-Clause
###############################################################################

from setuptools import setup, find_packages
# To use a consistent encoding
from codecs import open
from os import path

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file
with open(path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='vpncertd',

    version='0.2.0',

    description='Private certificate authority daemon for a VPN fleet',
    long_description=long_description,
    long_description_content_type='text/markdown',

    license='BSD',

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        'Development Status :: 4 - Beta',

        'Intended Audience :: System Administrators',
        'Topic :: Security :: Cryptography',

        'License :: OSI Approved :: BSD License',

        'Programming Language :: Python :: 3',
    ],

    keywords='pki ssl tls certificates crl openvpn',

    packages=find_packages(exclude=['contrib', 'docs', 'test']),

    python_requires='>=3.8',

    install_requires=['cryptography>=42', 'PyYAML'],

    extras_require={
        'dev': ['pytest'],
        'test': ['pytest'],
    },

    package_data={
    },

    data_files=[],

    entry_points={
        'console_scripts': [
            'vpn-certd=vpncertd.command_line:daemon_main',
            'vpn-certctl=vpncertd.command_line:ctl_main',
            'vpn-bundle=vpncertd.command_line:bundle_main',
        ],
    },
)
