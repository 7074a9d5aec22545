"""Valet Clock: valet clock-in tracking with continuous account-status enforcement"""

__version__ = "1.0.0"
