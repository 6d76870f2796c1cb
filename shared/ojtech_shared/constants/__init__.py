from ojtech_shared.constants.roles import DEFAULT_ROLE, RoleName

__all__ = ["DEFAULT_ROLE", "RoleName"]
