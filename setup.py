#!/usr/bin/env python

from setuptools import setup

setup(name='airbyte-connectors-cdk',
      version='0.1',
      description='Airbyte connector development kit with an Azure DevOps Git source and a JSON lines destination',
      author='minWare',
      classifiers=['Programming Language :: Python :: 3 :: Only'],
      python_requires='>=3.8',
      install_requires=[
          'singer-python>=6.1.0',
          'requests>=2.20.0',
          'backoff>=2.2',
          'psutil>=5.8.0',
          'pytz',
          'jsonschema',
      ],
      extras_require={
          'dev': [
              'pylint',
              'pytest',
          ]
      },
      entry_points='''
          [console_scripts]
          source-azure-git=source_azure_git:main
          destination-jsonl=destination_jsonl:main
      ''',
      packages=['connector_cdk', 'source_azure_git', 'destination_jsonl'],
      package_data = {
          'source_azure_git': ['schemas/*.json', 'resources/*.json'],
          'destination_jsonl': ['resources/*.json'],
      },
      include_package_data=True
)
