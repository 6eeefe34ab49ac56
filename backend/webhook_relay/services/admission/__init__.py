"""
Admission Services

Header, credential, content-type and rate limit checks for inbound events.
"""

from .gate import AdmissionGate, AdmissionResult, is_json_content_type

__all__ = ["AdmissionGate", "AdmissionResult", "is_json_content_type"]
