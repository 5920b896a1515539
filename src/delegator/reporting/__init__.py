"""Read-only dashboard aggregation."""

from .dashboard import Dashboard, DashboardSnapshot, TaskCounts

__all__ = ["Dashboard", "DashboardSnapshot", "TaskCounts"]
