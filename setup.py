from setuptools import find_packages, setup

setup(
    name='ttyio',
    version='1.0.0',
    description='Timeout-bounded synchronous and asyncio byte transfer over raw serial descriptors',
    author='isantolin',
    author_email='',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.11',
    install_requires=[
        'msgspec',
        'tenacity',
        'prometheus-client',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
