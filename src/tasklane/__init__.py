"""Tasklane: project/task tracker with per-type workflow state machines."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tasklane")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from tasklane.core import Task, TasklaneDB

__all__ = ["Task", "TasklaneDB", "__version__"]
