"""
Setup script for the Immochat auth service
"""
from setuptools import setup, find_packages

setup(
    name="immochat",
    version="0.1.0",
    description="Credential and session authority for the Immochat real-estate app",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "sqlalchemy>=2.0",
        "alembic>=1.13",
        "psycopg2-binary>=2.9",
        "pydantic[email]>=2.5",
        "passlib[bcrypt]>=1.7.4",
        # passlib 1.7.4 breaks on the bcrypt 4.1+ backend API
        "bcrypt>=4.0.1,<4.1",
        "python-jose[cryptography]>=3.3",
        "fastapi-sso>=0.10",
        "python-dotenv>=1.0",
        "apscheduler>=3.10,<4",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "httpx>=0.25",
        ],
    },
)
