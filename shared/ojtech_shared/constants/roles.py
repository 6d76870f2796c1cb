from enum import Enum


class RoleName(str, Enum):
    STUDENT = "ROLE_STUDENT"
    EMPLOYER = "ROLE_EMPLOYER"
    NLO = "ROLE_NLO"
    ADMIN = "ROLE_ADMIN"


# Lowest-privilege role; assigned to self-service and OAuth2-provisioned accounts.
DEFAULT_ROLE = RoleName.STUDENT
