from setuptools import setup, find_packages

setup(
    name='clusterboot',
    version='0.1.0',
    packages=find_packages(exclude=['clusterboot.tests']),
    include_package_data=True,
    install_requires=[
        'typer',
        'paramiko',
        'pydantic>=2',
        'PyYAML',
        'python-dotenv',
        'jsonschema',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'clusterboot=clusterboot.cli:app'
        ]
    },
    description='Bootstrap a k3s master and worker nodes on Lima VMs across SSH-reachable hosts',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
