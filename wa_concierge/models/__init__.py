"""
Data models for the WhatsApp concierge API
"""
from .meeting import IncomingMeeting, MeetingResponse
from .webhook import MESSAGE_EVENTS, WAMessage, WAWebhookPayload, WebhookResponse
