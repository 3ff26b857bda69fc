from setuptools import setup, find_namespace_packages

setup(
    name="metrics-monitoring-service",
    version="1.0.0",
    description="Operational metrics collection and performance monitoring microservice",
    author="Your Team",
    packages=find_namespace_packages(include=["src", "src.*", "config", "config.*"]),
    python_requires=">=3.11",
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#")
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
    },
)
