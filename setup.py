from setuptools import setup, find_packages

setup(
    name='honestforest',
    version='1.0',
    packages=find_packages(exclude=('tests', 'experiments')),
    description='Honest generalized random forests with grouped jackknife confidence intervals',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    python_requires='>=3.10',
    install_requires=[
        'numpy>=1.22',
        'joblib>=1.2',
        'loguru>=0.7',
        'scipy>=1.8',
    ],
    extras_require={
        'test': ['pytest>=7'],
    },
)
