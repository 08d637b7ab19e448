"""
Setup script for benchgo - Encrypted peer-to-peer text sessions.

This package provides:
- Session establishment from RSA-wrapped key halves (no pre-shared secret)
- CAST5 block-encrypted text messages over established sessions
- An asyncio listening server and an interactive terminal peer
- Optional password-protected persistent identities
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='benchgo',
    version='0.3.0',
    description='Encrypted peer-to-peer text sessions over RSA-wrapped key halves',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.8',
    install_requires=[
        'cryptography>=43.0.0',
        'argon2-cffi>=23.1.0',
        'msgpack>=1.0.0',
        'rich>=13.7.0',
        'tomli>=2.0.0; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'benchgo=benchgo.cli:main',
            'benchgo-keygen=benchgo.cli:keygen_main',
        ],
    },
)
