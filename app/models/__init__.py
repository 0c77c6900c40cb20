from app.models.migration import (  # noqa: F401
    EntityKind,
    ExternalIdMapping,
    MigrationLock,
    MigrationRun,
    MigrationRunStatus,
    MigrationSource,
)
from app.models.records import Claim, Contact, Lead, Property  # noqa: F401
