#!/usr/bin/env python3
import setuptools


if __name__ == '__main__':
    setuptools.setup(
        name='orange3-harmony',
        version='0.1.0',
        description='Harmony integration of single cell embeddings for Orange',
        packages=setuptools.find_namespace_packages(include=['orangecontrib.*']),
        python_requires='>=3.8',
        install_requires=[
            'Orange3>=3.34.0',
            'pandas>=1.0',
            'anndata>=0.8',
            'numpy',
            'scikit-learn',
            'joblib',
        ],
        extras_require={
            'doc': ['sphinx', 'recommonmark', 'sphinx_rtd_theme', 'docutils'],
            'package': ['twine', 'wheel'],
            'test': [
                'coverage',
            ],
        },
    )
