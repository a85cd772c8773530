from setuptools import find_packages, setup
import pathlib

def get_version():
    # read version from __init__ if defined else default
    init_path = pathlib.Path(__file__).parent / 'src' / 'ragclient' / '__init__.py'
    for line in init_path.read_text(encoding='utf-8').splitlines():
        if line.startswith('__version__'):
            return line.split('=')[1].strip().strip('"\'')
    return '0.1.0'

setup(
    name='ragclient',
    version=get_version(),
    description='Python client for the auto-coder.rag command-line RAG tool',
    package_dir={'': 'src'},
    packages=find_packages(where='src', include=['ragclient', 'ragclient.*']),
    python_requires=">=3.10",
    install_requires=['mcp>=1.2,<2'],
    extras_require={'test': ['pytest>=7']},
    entry_points={
        'console_scripts': [
            'ragclient=ragclient.cli:main',
            'ragclient-mcp=ragclient.mcp_server:main',
        ],
    },
)
