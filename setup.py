from setuptools import find_packages, setup

setup(name='pykudu',
      version='0.1.0',
      description='Native python client to a columnar, tablet-partitioned storage service',
      author='Sam Curley',
      author_email='CurleySamuel@gmail.com',
      license='Apache License 2.0',
      packages=find_packages('.', exclude=['tests']),
      python_requires='>=3.7',
      install_requires=["intervaltree  >= 3.0, < 4.0",
                        "zope.interface"],
      extras_require={
          "test": ["pytest"],
      },
      entry_points={
          "console_scripts": [
              "pykudu-sample = pykudu.samples.sample:main",
          ],
      },
      classifiers=[
          "Programming Language :: Python",
          "Programming Language :: Python :: 3",
          "Programming Language :: Python :: 3.7",
          "Programming Language :: Python :: 3.8",
          "Programming Language :: Python :: 3.9",
      ],
      zip_safe=False)
