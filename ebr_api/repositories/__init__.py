"""
Repository layer: data access per aggregate, always predicated on tenant id.
"""
from .audit import AuditLogRepository  # noqa: F401
from .batches import BatchRepository, BatchStepRepository  # noqa: F401
from .recipes import RecipeRepository  # noqa: F401
from .security import UserRepository  # noqa: F401
from .tenancy import TenantRepository  # noqa: F401
