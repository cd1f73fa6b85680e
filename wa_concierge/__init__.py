"""
WhatsApp concierge: conversation state, consent handling and meeting reminders.
"""

__version__ = "1.0.0"
