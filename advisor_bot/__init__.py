"""
Advisor_bot - an AI assistant backend for financial advisors.

Connects Gmail, Google Calendar and HubSpot to a tool-calling LLM agent
with retrieval over the advisor's own emails and contacts.
"""

__version__ = "0.1.0"
