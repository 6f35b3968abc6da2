"""
Online/offline signal and transition events.
"""

from connectivity.monitor import ConnectivityMonitor

__all__ = ['ConnectivityMonitor']
