"""CRM migration module.

Provides on-demand import of historical records from third-party CRMs:
- JobNimbus Contacts → Contacts
- JobNimbus Jobs → Properties, Leads, Claims
- AccuLynx Contacts → Contacts
- AccuLynx Jobs → Properties, Claims
- AccuLynx Leads → Leads
"""

from app.services.migrations.adapters import SourceAdapter, build_adapter
from app.services.migrations.client import ProviderCredentials
from app.services.migrations.orchestrator import MigrationOptions, MigrationOrchestrator, MigrationResult
from app.services.migrations.service import run_migration

__all__ = [
    "MigrationOptions",
    "MigrationOrchestrator",
    "MigrationResult",
    "ProviderCredentials",
    "SourceAdapter",
    "build_adapter",
    "run_migration",
]
