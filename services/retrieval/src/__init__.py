"""
Retrieval Service for the Biomedical Graph Assistant.

Handles hybrid graph search, answer generation, and chat turns.
"""

__version__ = "1.0.0"
