from setuptools import setup, find_packages

with open('README.md', 'r') as readme:
    long_description = readme.read()

setup(
    name='multispline', 
    version='1.0.0', 
    description='A package for multivariate tensor-product B-spline surfaces.', 
    long_description=long_description, 
    long_description_content_type='text/markdown', 
    packages=find_packages(exclude=['tests', 'tests.*']), 
    install_requires=['numpy', 'numba', 'scipy', 'matplotlib', 'tqdm'], 
    extras_require={'test': ['pytest']}, 
    classifiers=['Programming Language :: Python :: 3', 
                 'Operating System :: OS Independent'], 
    
)
