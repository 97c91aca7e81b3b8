"""
Services built on the NerdGraph client.
"""

from .dashboard import DashboardService, ValidationReport, validate_dashboard
from .schema import SchemaService

__all__ = ["DashboardService", "ValidationReport", "validate_dashboard", "SchemaService"]
