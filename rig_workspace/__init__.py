"""
rig-workspace - git worktree workspaces for concurrently running agents
"""

from .__version__ import __version__
from .config import Config
from .core import RigWorkspace
from .services.repository import Repository

__all__ = ["RigWorkspace", "Repository", "Config", "__version__"]
