from setuptools import setup, find_packages

setup(
    name="ticker-feed",
    version="1.0.0",
    description="Market-data streaming client with realtime socket, polling fallback and subscription replay",
    author="Ticker Feed Team",
    python_requires=">=3.10",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#")
    ],
    extras_require={
        "dev": [
            line.strip()
            for line in open("requirements-dev.txt")
            if line.strip() and not line.startswith(("#", "-r"))
        ],
    },
    entry_points={
        "console_scripts": [
            "ticker-feed=ticker_feed.main:run",
        ],
    },
)
