from passlib.context import CryptContext

context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    """False for accounts without a local password (provider-only sign-in)."""
    if not hashed:
        return False
    return context.verify(plain, hashed)


def normalize_email(email: str) -> str:
    return email.strip().lower()
