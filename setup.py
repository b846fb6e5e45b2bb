"""Setup script for the voice agent."""

from setuptools import setup, find_packages

setup(
    name="voice-agent",
    version="1.0.0",
    description="Spoken conversations with scripted AI personas",
    author="Your Name",
    packages=find_packages(include=["voice_agent", "voice_agent.*", "mocks"]),
    python_requires=">=3.11",
    install_requires=[
        "python-dotenv>=1.0.0",
        "google-generativeai>=0.5.0",
        "elevenlabs>=2.0.0",
        "pygame>=2.5.0",
        "structlog>=23.0.0",
        "click>=8.0.0",
        "numpy>=1.24.0",
        "sounddevice>=0.4.6",
        "soundfile>=0.12.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "httpx>=0.27.0",
        "pydantic>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-agent=voice_agent.cli.main:cli",
        ],
    },
)
