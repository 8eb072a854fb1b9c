"""
Workspace session process supervisor.

Brings up the two long-lived processes of a remote coding workspace: the
socket-bound editor server and the maintenance/dev scripts that run inside
the persistent multiplexed session.
"""

__version__ = "0.1.0"
