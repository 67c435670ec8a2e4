import random
import string

from app.core.authorization import Principal, parse_roles
from app.core.security import create_access_token


def random_lower_string() -> str:
    return "".join(random.choices(string.ascii_lowercase, k=32))


def random_subject_id() -> str:
    return f"subject-{random_lower_string()[:12]}"


def token_headers(subject_id: str, roles: list[str]) -> dict[str, str]:
    token = create_access_token(subject=subject_id, roles=roles)
    return {"Authorization": f"Bearer {token}"}


def make_principal(subject_id: str, *roles: str) -> Principal:
    return Principal(subject_id=subject_id, roles=parse_roles(roles))
