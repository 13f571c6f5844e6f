"""
Shared constants used across pipeline stages.

- stopwords.py: generic technology terms excluded from cause names
- palette.py: cause colors and shading
"""
