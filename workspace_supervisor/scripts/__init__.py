"""
The scripts package.
Materializes the maintenance and dev scripts of a workspace and runs them in
the multiplexed session, reporting failures to the control plane.
"""
from .materializer import ScriptMaterializer
from .orchestrator import OrchestratorTimings, ScriptOrchestrator
from .reporting import ControlPlaneReporter
from .launcher import launch_orchestrator

__all__ = ['ScriptMaterializer', 'OrchestratorTimings', 'ScriptOrchestrator', 'ControlPlaneReporter',
           'launch_orchestrator']
