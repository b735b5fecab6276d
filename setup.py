"""Setup script for the FlowDeck flow editor packages."""

import os
from glob import glob
from setuptools import setup, find_packages

package_name = 'flowdeck'
import_name = 'flow_editor'


def get_package_data():
    """Collect the YAML files shipped inside the package."""
    package_dir = os.path.join(os.path.dirname(__file__), import_name)
    patterns = []

    # Default editor configuration
    config_dir = os.path.join(package_dir, 'config')
    if glob(os.path.join(config_dir, '*.yaml')):
        patterns.append('config/*.yaml')

    # Node type definitions
    definitions_dir = os.path.join(package_dir, 'node_types', 'definitions')
    if glob(os.path.join(definitions_dir, '*.yaml')):
        patterns.append('node_types/definitions/*.yaml')

    return {import_name: patterns}


setup(
    name=package_name,
    version='0.3.0',
    packages=find_packages(exclude=['test']),
    package_data=get_package_data(),
    include_package_data=True,
    install_requires=[
        'setuptools',
        'websockets>=10.0',
        'aiohttp>=3.8.0',
        'pyyaml>=6.0',
        'psutil>=5.9.0',
    ],
    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-asyncio>=0.20.0',
            'pytest-cov>=4.0.0',
            'black>=23.0.0',
            'isort>=5.12.0',
            'mypy>=1.0.0',
            'flake8>=6.0.0',
        ],
    },
    zip_safe=False,
    maintainer='FlowDeck Team',
    maintainer_email='maintainer@example.com',
    description='FlowDeck - flow editor contract and radio broadcast control',
    license='MIT',
    tests_require=['pytest'],
    entry_points={
        'console_scripts': [
            'flowdeck_sim = flow_editor.simulator.server:main',
        ],
    },
    python_requires='>=3.10',
)
