# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Role -> capability resolution and the FastAPI dependencies built on it.

``authorize`` is the only place that decides whether a role may reach a view
or perform an action. Routes, navigation and templates all ask it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional
from urllib.parse import urlsplit

from fastapi import Request

from farmapay.auth.roles import Role
from farmapay.auth.session import COOKIE_NAME, Principal, SessionGuard
from farmapay.errors import Unauthenticated, Unauthorized


class Capability(str, Enum):
    # Views
    VIEW_OPERATIONAL_DASHBOARD = "view:operational-dashboard"
    VIEW_TEAM_DASHBOARD = "view:team-dashboard"
    VIEW_ADMIN_DASHBOARD = "view:admin-dashboard"
    VIEW_NEW_LINK = "view:new-link"
    VIEW_LINKS = "view:links"
    VIEW_CUSTOMERS = "view:customers"
    VIEW_PROFILE = "view:profile"
    VIEW_TEAM = "view:team"
    VIEW_REPORTS = "view:reports"
    VIEW_USERS = "view:users"
    VIEW_SYSTEM_SETTINGS = "view:system-settings"
    VIEW_AUDIT_LOGS = "view:audit-logs"
    VIEW_FINANCIAL_REPORTS = "view:financial-reports"
    VIEW_SETTINGS = "view:settings"

    # Actions
    LINKS_CREATE = "links:create"
    CUSTOMERS_EDIT = "customers:edit"
    REPORTS_EXPORT = "reports:export"
    USERS_MANAGE = "users:manage"
    SETTINGS_EDIT = "settings:edit"


class View(str, Enum):
    OPERATIONAL_DASHBOARD = "operational-dashboard"
    TEAM_DASHBOARD = "team-dashboard"
    ADMIN_DASHBOARD = "admin-dashboard"
    NEW_LINK = "new-link"
    LINKS = "links"
    CUSTOMERS = "customers"
    PROFILE = "profile"
    TEAM = "team"
    REPORTS = "reports"
    USERS = "users"
    SYSTEM_SETTINGS = "system-settings"
    AUDIT_LOGS = "audit-logs"
    FINANCIAL_REPORTS = "financial-reports"
    SETTINGS = "settings"


@dataclass(frozen=True)
class ViewSpec:
    path: str
    title: str
    capability: Capability


VIEWS: Dict[View, ViewSpec] = {
    View.OPERATIONAL_DASHBOARD: ViewSpec("/dashboard", "Dashboard", Capability.VIEW_OPERATIONAL_DASHBOARD),
    View.TEAM_DASHBOARD: ViewSpec("/manager", "Painel Gerencial", Capability.VIEW_TEAM_DASHBOARD),
    View.ADMIN_DASHBOARD: ViewSpec("/admin", "Controle Total", Capability.VIEW_ADMIN_DASHBOARD),
    View.NEW_LINK: ViewSpec("/new-link", "Novo Link", Capability.VIEW_NEW_LINK),
    View.LINKS: ViewSpec("/links", "Links", Capability.VIEW_LINKS),
    View.CUSTOMERS: ViewSpec("/customers", "Clientes", Capability.VIEW_CUSTOMERS),
    View.PROFILE: ViewSpec("/profile", "Perfil", Capability.VIEW_PROFILE),
    View.TEAM: ViewSpec("/team", "Equipe", Capability.VIEW_TEAM),
    View.REPORTS: ViewSpec("/reports", "Relatórios", Capability.VIEW_REPORTS),
    View.USERS: ViewSpec("/users", "Usuários", Capability.VIEW_USERS),
    View.SYSTEM_SETTINGS: ViewSpec("/system-settings", "Configurações do Sistema", Capability.VIEW_SYSTEM_SETTINGS),
    View.AUDIT_LOGS: ViewSpec("/audit-logs", "Logs de Auditoria", Capability.VIEW_AUDIT_LOGS),
    View.FINANCIAL_REPORTS: ViewSpec("/financial-reports", "Relatórios Financeiros", Capability.VIEW_FINANCIAL_REPORTS),
    View.SETTINGS: ViewSpec("/settings", "Configurações Gerais", Capability.VIEW_SETTINGS),
}

C = Capability

# Each role is listed in full. There is no fallback role.
ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.ATTENDANT: frozenset({
        C.VIEW_OPERATIONAL_DASHBOARD,
        C.VIEW_NEW_LINK,
        C.VIEW_LINKS,
        C.VIEW_CUSTOMERS,
        C.VIEW_PROFILE,
        C.LINKS_CREATE,
        C.CUSTOMERS_EDIT,
    }),
    Role.SALES: frozenset({
        C.VIEW_OPERATIONAL_DASHBOARD,
        C.VIEW_NEW_LINK,
        C.VIEW_LINKS,
        C.VIEW_CUSTOMERS,
        C.VIEW_PROFILE,
        C.VIEW_REPORTS,
        C.LINKS_CREATE,
        C.CUSTOMERS_EDIT,
    }),
    Role.MANAGER: frozenset({
        C.VIEW_TEAM_DASHBOARD,
        C.VIEW_OPERATIONAL_DASHBOARD,
        C.VIEW_NEW_LINK,
        C.VIEW_LINKS,
        C.VIEW_CUSTOMERS,
        C.VIEW_PROFILE,
        C.VIEW_TEAM,
        C.VIEW_REPORTS,
        C.VIEW_SETTINGS,
        C.LINKS_CREATE,
        C.CUSTOMERS_EDIT,
        C.REPORTS_EXPORT,
    }),
    Role.ADMIN: frozenset({
        C.VIEW_ADMIN_DASHBOARD,
        C.VIEW_TEAM_DASHBOARD,
        C.VIEW_OPERATIONAL_DASHBOARD,
        C.VIEW_NEW_LINK,
        C.VIEW_LINKS,
        C.VIEW_CUSTOMERS,
        C.VIEW_PROFILE,
        C.VIEW_TEAM,
        C.VIEW_REPORTS,
        C.VIEW_USERS,
        C.VIEW_SYSTEM_SETTINGS,
        C.VIEW_AUDIT_LOGS,
        C.VIEW_FINANCIAL_REPORTS,
        C.VIEW_SETTINGS,
        C.LINKS_CREATE,
        C.CUSTOMERS_EDIT,
        C.REPORTS_EXPORT,
        C.USERS_MANAGE,
        C.SETTINGS_EDIT,
    }),
    Role.INVESTOR: frozenset({
        C.VIEW_FINANCIAL_REPORTS,
        C.VIEW_REPORTS,
        C.VIEW_PROFILE,
        C.REPORTS_EXPORT,
    }),
}

DEFAULT_VIEWS: Dict[Role, View] = {
    Role.ATTENDANT: View.OPERATIONAL_DASHBOARD,
    Role.SALES: View.OPERATIONAL_DASHBOARD,
    Role.MANAGER: View.TEAM_DASHBOARD,
    Role.ADMIN: View.ADMIN_DASHBOARD,
    Role.INVESTOR: View.FINANCIAL_REPORTS,
}


def _check_tables() -> None:
    for role in Role:
        caps = ROLE_CAPABILITIES.get(role)
        if not caps:
            raise RuntimeError(f"Role {role.value} has no capabilities defined")
        view = DEFAULT_VIEWS.get(role)
        if view is None:
            raise RuntimeError(f"Role {role.value} has no default view")
        if VIEWS[view].capability not in caps:
            raise RuntimeError(f"Role {role.value} cannot reach its own default view {view.value}")
    missing = set(View) - set(VIEWS)
    if missing:
        raise RuntimeError(f"Views without a route entry: {sorted(v.value for v in missing)}")


_check_tables()


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


def capabilities_for(role: Role) -> FrozenSet[Capability]:
    return ROLE_CAPABILITIES[role]


def default_view_for(role: Role) -> View:
    return DEFAULT_VIEWS[role]


def authorize(role: Role, capability: Capability) -> Decision:
    if capability in ROLE_CAPABILITIES[role]:
        return Decision.ALLOW
    return Decision.DENY


def check_capability(role: Role, capability: Capability) -> None:
    if authorize(role, capability) is Decision.DENY:
        raise Unauthorized(capability.value)


def allowed_views(role: Role) -> List[View]:
    """Views the role may navigate to, in declaration order."""
    return [v for v, spec in VIEWS.items() if authorize(role, spec.capability) is Decision.ALLOW]


def view_for_path(path: str) -> Optional[View]:
    for v, spec in VIEWS.items():
        if spec.path == path:
            return v
    return None


def safe_next(next_url: Optional[str]) -> Optional[str]:
    """Accept only local absolute paths as post-login destinations."""
    s = (next_url or "").strip()
    if not s.startswith("/") or s.startswith("//") or "\\" in s:
        return None
    parts = urlsplit(s)
    if parts.scheme or parts.netloc:
        return None
    if parts.path in {"/login", "/logout"}:
        return None
    return s


# ------------------ FastAPI dependencies ------------------


def _guard(request: Request) -> SessionGuard:
    return request.app.state.guard


def load_principal_from_request(request: Request) -> Optional[Principal]:
    token = request.cookies.get(COOKIE_NAME, "")
    return _guard(request).evaluate(token).principal


def current_principal_optional(request: Request) -> Optional[Principal]:
    # The auth middleware evaluates the cookie once per request, None included.
    if getattr(request.state, "session_evaluated", False):
        return request.state.principal
    return load_principal_from_request(request)


def require_principal(request: Request) -> Principal:
    p = current_principal_optional(request)
    if p:
        return p
    next_url = str(request.url.path)
    if request.url.query:
        next_url += "?" + request.url.query
    raise Unauthenticated(next_url=next_url)


def require_capability(capability: Capability):
    def _dep(request: Request) -> Principal:
        p = require_principal(request)
        check_capability(p.role, capability)
        return p

    return _dep


def cookie_settings() -> dict:
    secure = os.getenv("FARMAPAY_COOKIE_SECURE", "false").lower() in {"1", "true", "yes", "y"}
    return {"httponly": True, "samesite": "lax", "secure": secure}
