from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings
from models import Expense


class Role(str, Enum):
    employee = "employee"
    manager = "manager"
    finance = "finance"
    admin = "admin"
    owner = "owner"


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: Role


class AccessPolicy(Protocol):
    def can_view(self, principal: Principal, expense: Expense) -> bool: ...

    def can_modify(self, principal: Principal, expense: Expense) -> bool: ...

    def can_manage_categories(self, principal: Principal) -> bool: ...


class RoleAccessPolicy:
    view_roles = frozenset({Role.manager, Role.finance, Role.admin, Role.owner})
    modify_roles = frozenset({Role.finance, Role.admin, Role.owner})
    category_roles = frozenset({Role.manager, Role.finance, Role.admin, Role.owner})

    def can_view(self, principal: Principal, expense: Expense) -> bool:
        if expense.owner_id == principal.user_id:
            return True
        return principal.role in self.view_roles

    def can_modify(self, principal: Principal, expense: Expense) -> bool:
        if expense.owner_id == principal.user_id:
            return True
        return principal.role in self.modify_roles

    def can_manage_categories(self, principal: Principal) -> bool:
        return principal.role in self.category_roles


class InvalidPrincipalToken(ValueError):
    pass


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.identity_secret, salt="principal")


def issue_principal_token(principal: Principal) -> str:
    return _serializer().dumps({"u": principal.user_id, "r": principal.role.value})


def load_principal_token(token: str, max_age_secs: Optional[int] = None) -> Principal:
    if max_age_secs is None:
        max_age_secs = get_settings().identity_max_age_secs
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except SignatureExpired as exc:
        raise InvalidPrincipalToken("Identity token expired") from exc
    except BadSignature as exc:
        raise InvalidPrincipalToken("Invalid identity token") from exc

    try:
        return Principal(user_id=int(data["u"]), role=Role(data["r"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidPrincipalToken("Malformed identity token") from exc
