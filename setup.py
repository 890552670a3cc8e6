import setuptools

setuptools.setup(
  name='ebmf',
  description='Empirical Bayes matrix factorization',
  version='0.1',
  author='ebmf developers',
  license='MIT',
  install_requires=[
    'numpy',
    'pandas',
    'scipy',
    'scikit-learn',
  ],
  extras_require={
    'ashr': ['rpy2'],
    'test': ['pytest'],
  },
  packages=setuptools.find_packages('src'),
  package_dir={'': 'src'},
)
