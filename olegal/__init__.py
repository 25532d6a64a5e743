"""oLegal - legal-advice chat backed by Google Gemini."""

__version__ = "0.1.0"
