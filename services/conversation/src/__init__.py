"""
Conversation Service for the Biomedical Graph Assistant.

Keeps recent chat sessions and their cross-turn context.
"""

__version__ = "1.0.0"
