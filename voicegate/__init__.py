"""
Voicegate
=========
Domain authorization and call admission for embeddable voice-call widgets.
"""

__version__ = "1.0.0"
