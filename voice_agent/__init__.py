"""
Voice Agent - Spoken conversations with scripted AI personas.

A microphone capture / completion / speech synthesis loop on the client,
backed by a completion server that tries several AI providers in order
and degrades to a canned reply when none of them answers.
"""

__version__ = "1.0.0"
