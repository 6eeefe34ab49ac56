"""
Webhook Relay

Multi-tenant webhook ingestion with per-account rate limiting, a durable
at-least-once event queue and concurrent fan-out delivery.
"""

__version__ = "0.1.0"
