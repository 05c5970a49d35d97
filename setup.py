from setuptools import setup, find_namespace_packages

setup(
    name="search-history-vault",
    version="0.1.0",
    packages=find_namespace_packages(include=["src", "src.*"]),
    py_modules=["history_cli"],
    include_package_data=True,
    install_requires=[
        "cryptography>=42.0.5",
        "aiosqlite>=0.19.0",
        "rich>=13.7.0",
        "python-dotenv>=1.0.1",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "search-history=history_cli:main",
        ],
    },
    python_requires=">=3.8",
)
