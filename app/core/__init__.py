"""
Shared building blocks for the payment service's Django apps.

- core.models: BaseModel (created_at / updated_at)
- core.model_mixins: UUIDPrimaryKeyMixin, MetadataMixin
- core.services: BaseService, ServiceResult
- core.exceptions: BaseApplicationError, ConflictError
- core.views: /health/ endpoint

Models are not re-exported here; importing them before the app registry
is ready raises AppRegistryNotReady.
"""

from .exceptions import BaseApplicationError, ConflictError
from .services import BaseService, ServiceResult

__all__ = [
    "BaseApplicationError",
    "BaseService",
    "ConflictError",
    "ServiceResult",
]
