"""Build PeerTap package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="peertap",
    version="0.1.0",
    author="PeerTap Developers",
    description="WebRTC peer sessions and tap-point exchange over a relay",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=["peertap", "peertap.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=[
        "aiortc>=1.5.0",
        "click",
        "pydantic>=2",
        "tomli ; python_version<'3.11'",
        "tomli-w",
        "typing-extensions ; python_version<'3.11'",
        "websockets>=13",
    ],
    extras_require={
        "test": [
            "coverage",
            "pytest",
            "pytest-asyncio>=0.23",
            "pytest-cov",
        ],
    },
    entry_points={
        "console_scripts": [
            "peertap-peer=peertap.peer.run:cli",
            "peertap-relay=peertap.signaling.run:cli",
        ],
    },
)
