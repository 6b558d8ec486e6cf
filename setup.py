from setuptools import setup, find_packages

setup(name='handoff',
      version='0.0.1',
      description='Asynchronous sequences with generator-style suspend/resume and bounded-concurrency for-each, on trio',
      classifiers=[
          "Programming Language :: Python :: 3",
          "License :: OSI Approved :: MIT License",
          "Framework :: Trio",
      ],
      keywords='trio async enumerator generator concurrency',
      license='MIT',
      packages=find_packages(include=['handoff', 'handoff.*']),
      python_requires='>=3.11',
      install_requires=[
          'trio>=0.25',
          'outcome',
      ],
      include_package_data=True,
)
