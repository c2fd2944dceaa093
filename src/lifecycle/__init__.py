"""
Lifecycle - install and activation of a version.
"""

from .controller import LifecycleController

__all__ = ['LifecycleController']
