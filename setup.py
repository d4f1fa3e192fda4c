from setuptools import setup, find_packages

setup(
    name='mdxsync',
    version='0.1.0',
    packages=find_packages(include=['mdxsync', 'mdxsync.*']),
    entry_points={
        'console_scripts': [
            'mdxsync=mdxsync.cli:main',
        ],
    },
    install_requires=[
        'aiohttp',
        'click',
        'fastapi',
        'pydantic>=2',
        'python-dotenv',
        'python-frontmatter',
        'pyyaml',
        'uvicorn',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'httpx',
        ],
    },
    author='While True Industries',
    author_email='adam@whiletrue.industries',
    description='Sync MDX articles and JSON settings from GitHub into a content store',
    python_requires='>=3.10',
)
