"""
Dispatch Services

Concurrent fan-out of accepted events to registered destinations.
"""

from .dispatcher import DeliveryOutcome, DispatchReport, Dispatcher

__all__ = ["Dispatcher", "DispatchReport", "DeliveryOutcome"]
