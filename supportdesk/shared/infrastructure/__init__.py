"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Notification delivery (push channels, email, webhooks)
"""
