"""Lexicon Scanner - curated Hebrew lexicon store and AI-assisted page sweeps."""

from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_env_file = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_env_file if _env_file.exists() else None)

__version__ = "0.3.0"
