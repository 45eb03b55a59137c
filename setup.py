from setuptools import setup, find_packages

setup(
    name="dooh-signage",
    version="0.1.0",
    description="Advertising terminal player and slot-allocation CMS",
    packages=find_packages(include=["src", "src.*", "cms", "cms.*"], exclude=["cms.tests", "cms.tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "Flask>=3.0.0",
        "Flask-SQLAlchemy>=3.1.0",
        "Flask-Migrate>=4.0.0",
        "SQLAlchemy>=2.0.0",
        "PyYAML>=6.0",
        "pyzmq>=25.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black>=23.0.0",
            "pylint>=2.17.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "dooh-player=src.player.player:main",
        ]
    },
)
