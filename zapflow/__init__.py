"""
ZapFlow - flow execution engine for WhatsApp conversational automations
"""
__version__ = "1.0.0"
