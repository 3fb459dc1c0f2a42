"""
ORM models for tenants, users, recipes, batches, batch steps, reports and the audit trail.

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

# Re-export commonly used models for convenience and to ensure import side-effects
# register all mapped classes with SQLAlchemy metadata.

from .tenancy import (  # noqa: F401
    Tenant,
    TenantSettings,
)
from .security import (  # noqa: F401
    User,
)
from .recipes import (  # noqa: F401
    Recipe,
    RecipeStep,
)
from .batches import (  # noqa: F401
    Batch,
    BatchStep,
    PdfReport,
)
from .audit import (  # noqa: F401
    AuditLogEntry,
)
