from ojtech_shared.models.error import ErrorResponse
from ojtech_shared.models.principal import AuthenticatedPrincipal

__all__ = ["AuthenticatedPrincipal", "ErrorResponse"]
