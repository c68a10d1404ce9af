"""
Public facing controller facades for ControlMesh.
"""

from .controller_loop import ControllerLoop  # noqa: F401
from .control_plane import ControlPlane  # noqa: F401

__all__ = ["ControllerLoop", "ControlPlane"]
