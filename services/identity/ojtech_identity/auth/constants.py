from ojtech_shared.constants import DEFAULT_ROLE, RoleName

# ── Sign-up role requests → catalog role ──────────────────────────────────────
# ROLE_ADMIN is never self-service; admins are created with scripts/create_admin.py.
SIGNUP_ROLE_ALIASES: dict[str, RoleName] = {
    "student": RoleName.STUDENT,
    "employer": RoleName.EMPLOYER,
    "nlo": RoleName.NLO,
}

DEFAULT_OAUTH_ROLE: RoleName = DEFAULT_ROLE

# ── Username generation for provisioned accounts ──────────────────────────────
USERNAME_MAX_LENGTH: int = 50
# Attempts to find a free username before giving up with a retryable conflict.
PROVISIONING_MAX_ATTEMPTS: int = 3

# ── OAuth2 transient attributes (Redis) ───────────────────────────────────────
OAUTH2_STATE_PREFIX: str = "oauth2_auth_request:"
