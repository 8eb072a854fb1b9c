"""
The editor server package.
Launches the socket-bound editor server, watches it, and tears it down.
"""
from .supervisor import EditorServerHandle, EditorServerSupervisor, EditorTimings

__all__ = ['EditorServerHandle', 'EditorServerSupervisor', 'EditorTimings']
