"""Setup configuration for the adaptive-ads package."""

from setuptools import setup, find_packages

setup(
    name="adaptive-ads",
    version="1.0.0",
    description="Meta Ads insights scoring, ranking and ingestion service",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Adaptive Ads Team",
    python_requires=">=3.9",
    packages=find_packages(where=".", include=["adaptive*"]),
    package_dir={"": "."},
    install_requires=[
        "python-dotenv==1.0.1",
        "PyYAML==6.0.2",
        "requests==2.32.3",
        "pytz>=2020.1",
        "SQLAlchemy==2.0.35",
        "prometheus-client==0.20.0",
        "jsonschema==4.23.0",
        "supabase>=2.5.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.29.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "httpx>=0.27.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "adaptive=adaptive.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
