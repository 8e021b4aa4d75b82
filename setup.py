"""Setup script for the SEO Rank Reporter."""

from setuptools import setup, find_packages

setup(
    name="seo-rank-reporter",
    version="1.0.0",
    description="Keyword rank tracking and scheduled SEO report delivery",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "sqlalchemy>=2.0.0",
        "requests>=2.31.0",
        "loguru>=0.7.0",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "celery[redis]>=5.3.0",
        "sendgrid>=6.10.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "seo-reporter=seo_reporter.cli:cli",
        ],
    },
)
