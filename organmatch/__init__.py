"""Organ donor/recipient compatibility matching engine"""

__version__ = "0.1.0"
