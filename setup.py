from setuptools import find_packages, setup

setup(
    name="jobsync",
    version="0.1.0",
    packages=find_packages(
        include=[
            "jobsync_common",
            "jobsync_common.*",
            "jobsync_render",
            "jobsync_render.*",
            "jobsync_client",
            "jobsync_client.*",
            "jobsync_controller",
            "jobsync_controller.*",
            "jobsync_cli",
            "jobsync_cli.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "jobsync=jobsync_cli.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
