"""
Dispute Engine - Claim & Compliance Resolution

Claims between the parties of a hiring, the compliances imposed to
settle them, and the escalation that follows non-compliance.
"""

__version__ = "0.1.0"
