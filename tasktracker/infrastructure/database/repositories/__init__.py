"""
Repository implementations for the data-access layer.
"""

from .task_repository import TaskRepository

__all__ = ["TaskRepository"]
