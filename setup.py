from setuptools import setup, find_packages


setup(
    name="capsule",
    version="0.1",
    packages=find_packages(include=["capsule", "capsule.*"]),
    description="Encryption at rest for backup archives: AES-GCM writer/reader with pluggable key retrieval.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    entry_points={
        "console_scripts": [
            "capsule=capsule.cli:main",
        ]
    },
)
