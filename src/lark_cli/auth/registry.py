"""
Auth registry for the lark CLI.

A pure, read-only table mapping CLI command paths to the services they touch
and each service to the token types, OAuth scopes and offline access it needs.
Nothing here performs I/O. All returned lists are de-duplicated and sorted so
that explanations and authorize URLs are deterministic.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..utils.constants import CLI_NAME, TOKEN_TYPE_TENANT, TOKEN_TYPE_USER
from ..utils.errors import RegistryError
from .scopes import canonicalize_scopes, format_scopes

logger = logging.getLogger(__name__)

TENANT = TOKEN_TYPE_TENANT
USER = TOKEN_TYPE_USER


@dataclass(frozen=True)
class ServiceScopeSet:
    """OAuth scope variants for a service."""

    full: Tuple[str, ...] = ()
    readonly: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceDef:
    """Auth definition of one backend service.

    Attributes:
        name: Display name.
        token_types: Token types the service accepts.
        required_user_scopes: Minimal user scope set; None when not yet declared.
        user_scopes: Full and readonly variants for login suggestions.
        requires_offline: Whether user access needs a refresh token.
    """

    name: str
    token_types: Tuple[str, ...]
    required_user_scopes: Optional[Tuple[str, ...]] = None
    user_scopes: ServiceScopeSet = field(default_factory=ServiceScopeSet)
    requires_offline: bool = False

    def accepts_user_token(self) -> bool:
        return USER in self.token_types


@dataclass(frozen=True)
class ServiceScopes:
    """Scope declarations of one service as reported for a command."""

    required_user_scopes: List[str]
    suggested_readonly_scopes: List[str]
    suggested_scopes: List[str]


@dataclass(frozen=True)
class AuthRequirement:
    """Compiled auth requirements of one command path."""

    command_path: str
    services: List[str]
    token_types: List[str]
    requires_offline: bool
    service_scopes: Mapping[str, ServiceScopes]

    @property
    def required_user_scopes(self) -> List[str]:
        scopes: List[str] = []
        for decl in self.service_scopes.values():
            scopes.extend(decl.required_user_scopes)
        return unique_sorted(scopes)

    @property
    def uses_user_token(self) -> bool:
        return USER in self.token_types


def _svc(
    name: str,
    token_types: Sequence[str],
    required: Optional[Sequence[str]] = None,
    full: Sequence[str] = (),
    readonly: Sequence[str] = (),
    offline: bool = False,
) -> ServiceDef:
    return ServiceDef(
        name=name,
        token_types=tuple(token_types),
        required_user_scopes=tuple(required) if required is not None else None,
        user_scopes=ServiceScopeSet(full=tuple(full), readonly=tuple(readonly)),
        requires_offline=offline,
    )


_DOCX_FULL = (
    "docx:document.block:convert",
    "docx:document:create",
    "docx:document:readonly",
    "docx:document:write_only",
)

_MAIL_READ = (
    "mail:user_mailbox.message:readonly",
    "mail:user_mailbox.message.subject:read",
    "mail:user_mailbox.message.address:read",
    "mail:user_mailbox.message.body:read",
)

_DRIVE_PERMISSIONS = (
    "docs:permission.member:create",
    "docs:permission.member:delete",
    "docs:permission.member:retrieve",
    "docs:permission.member:update",
    "docs:permission.setting:write_only",
)

# Keep this table stable and append-only where possible.
REGISTRY: Mapping[str, ServiceDef] = MappingProxyType({
    "drive": _svc(
        "drive", [TENANT, USER], ["drive:drive"],
        full=["drive:drive"], readonly=["drive:drive:readonly"], offline=True,
    ),
    "drive-export": _svc(
        "drive export", [TENANT, USER], ["drive:export:readonly"], offline=True,
    ),
    "drive-permissions": _svc(
        "drive permissions", [TENANT, USER], _DRIVE_PERMISSIONS,
        full=_DRIVE_PERMISSIONS, readonly=["docs:permission.member:retrieve"],
        offline=True,
    ),
    "drive-comment-read": _svc(
        "drive comment read", [TENANT, USER], ["docs:document.comment:read"],
        full=["docs:document.comment:read"], readonly=["docs:document.comment:read"],
        offline=True,
    ),
    "drive-comment-write": _svc(
        "drive comment write", [TENANT, USER],
        ["docs:document.comment:create", "docs:document.comment:update"],
        full=["docs:document.comment:create", "docs:document.comment:update"],
        offline=True,
    ),
    "docs": _svc(
        "docs", [TENANT, USER], ["docx:document:readonly"],
        full=_DOCX_FULL, readonly=["docx:document:readonly"], offline=True,
    ),
    "docx": _svc(
        "docx", [TENANT, USER], ["docx:document:readonly"],
        full=_DOCX_FULL, readonly=["docx:document:readonly"], offline=True,
    ),
    "sheets": _svc(
        "sheets", [TENANT, USER], ["sheets:spreadsheet:read"],
        full=[
            "sheets:spreadsheet:create",
            "sheets:spreadsheet:read",
            "sheets:spreadsheet:write_only",
            "sheets:spreadsheet.meta:read",
        ],
        readonly=["sheets:spreadsheet:readonly"],
        offline=True,
    ),
    "calendar": _svc(
        "calendar", [TENANT, USER], ["calendar:calendar"],
        full=["calendar:calendar"], readonly=["calendar:calendar:readonly"],
    ),
    "task": _svc(
        "task", [TENANT, USER], ["task:task:read"],
        full=["task:task:write"], readonly=["task:task:read"], offline=True,
    ),
    "task-write": _svc(
        "task write", [TENANT, USER], ["task:task:write"],
        full=["task:task:write"], offline=True,
    ),
    # Tasklist endpoints need the read scope even when write is granted.
    "tasklist": _svc(
        "tasklist", [TENANT, USER], ["task:tasklist:read"],
        full=["task:tasklist:read", "task:tasklist:write"],
        readonly=["task:tasklist:read"], offline=True,
    ),
    "tasklist-write": _svc(
        "tasklist write", [TENANT, USER], ["task:tasklist:write"],
        full=["task:tasklist:read", "task:tasklist:write"], offline=True,
    ),
    "mail": _svc(
        "mail", [TENANT, USER], _MAIL_READ,
        full=_MAIL_READ + ("mail:user_mailbox.message:send",),
        readonly=_MAIL_READ, offline=True,
    ),
    "mail-send": _svc(
        "mail send", [USER], ["mail:user_mailbox.message:send"], offline=True,
    ),
    "mail-public": _svc("mail public", [TENANT]),
    "wiki": _svc(
        "wiki", [TENANT, USER], ["wiki:wiki"],
        full=["wiki:wiki"], readonly=["wiki:wiki:readonly"], offline=True,
    ),
    "im": _svc("im", [TENANT]),
    "search-message": _svc(
        "search message", [USER], ["im:message:readonly", "search:message"],
        offline=True,
    ),
    "search-user": _svc(
        "search user", [USER],
        [
            "contact:contact.base:readonly",
            "contact:user.employee_id:readonly",
            "contact:user:search",
        ],
        offline=True,
    ),
    "search-docs": _svc(
        "search docs", [USER], ["search:docs:read"], offline=True,
    ),
    "vc-meeting": _svc(
        "vc meeting", [USER], ["vc:meeting:readonly"],
        readonly=["vc:meeting:readonly"], offline=True,
    ),
    "base": _svc("base", [TENANT]),
})

# Space separated command paths to service names, matched by longest prefix.
COMMAND_SERVICE_MAP: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "drive": ("drive",),
    "drive export": ("drive-export",),
    "drive permissions": ("drive-permissions",),
    "drive comments": ("drive-comment-read",),
    "drive comments add": ("drive-comment-write",),
    "drive comments update": ("drive-comment-write",),
    "docs": ("docs",),
    "docs export": ("drive-export",),
    "docs search": ("search-docs",),
    "sheets": ("sheets",),
    "mail": ("mail",),
    "mail send": ("mail-send",),
    "mail public-mailboxes": ("mail-public",),
    "mail mailboxes": ("mail-public",),
    "wiki": ("wiki",),
    "base": ("base",),
    "bases": ("base",),
    "calendar": ("calendar",),
    "calendars": ("calendar",),
    "tasks": ("task",),
    "tasks create": ("task-write",),
    "tasks update": ("task-write",),
    "tasks delete": ("task-write",),
    "tasklists": ("tasklist",),
    "tasklists create": ("tasklist-write",),
    "tasklists update": ("tasklist-write",),
    "tasklists delete": ("tasklist-write",),
    "chats": ("im",),
    "messages": ("im",),
    "msg": ("im",),
    "msg search": ("search-message",),
    "messages search": ("search-message",),
    "users search": ("search-user",),
    "meetings": ("vc-meeting",),
    "im": ("im",),
})

DEFAULT_USER_OAUTH_SERVICES = ["drive"]

USER_OAUTH_SERVICE_ALIASES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "all": ("drive", "docx", "sheets"),
    "user": ("drive", "docx", "sheets"),
})


def unique_sorted(items: Iterable[str]) -> List[str]:
    return sorted({item.strip() for item in items if item and item.strip()})


def normalize_services(services: Iterable[str]) -> List[str]:
    """Lowercase, trim and de-duplicate service names, keeping order."""
    seen = set()
    out = []
    for service in services:
        service = (service or "").strip().lower()
        if not service or service in seen:
            continue
        seen.add(service)
        out.append(service)
    return out


def get_service(name: str) -> ServiceDef:
    """
    Look up a service definition.

    Raises:
        RegistryError: If the service is unknown.
    """
    service = REGISTRY.get(name)
    if service is None:
        raise RegistryError(
            f"unknown service {name!r} "
            f"(use `{CLI_NAME} auth user services` to list supported services)"
        )
    return service


def _command_parts(command: str) -> List[str]:
    return [part.lower() for part in command.split()]


def services_for_command(command: str) -> Optional[List[str]]:
    """
    Map a command path to its services using longest-prefix matching.

    Args:
        command: Space separated command path, e.g. "drive search".

    Returns:
        Sorted service names, or None when no prefix is mapped.
    """
    parts = _command_parts(command)
    for i in range(len(parts), 0, -1):
        services = COMMAND_SERVICE_MAP.get(" ".join(parts[:i]))
        if services is not None:
            return unique_sorted(services)
    return None


def token_types_from_services(services: Iterable[str]) -> List[str]:
    types: List[str] = []
    for name in normalize_services(services):
        types.extend(get_service(name).token_types)
    return unique_sorted(types)


def requires_offline_from_services(services: Iterable[str]) -> bool:
    return any(get_service(name).requires_offline for name in normalize_services(services))


def required_user_scopes_from_services(services: Iterable[str]) -> List[str]:
    scopes: List[str] = []
    for name in normalize_services(services):
        scopes.extend(get_service(name).required_user_scopes or ())
    return unique_sorted(scopes)


def services_missing_required_user_scopes(services: Iterable[str]) -> List[str]:
    """User-token services that have not declared their required scopes yet."""
    missing = []
    for name in normalize_services(services):
        service = get_service(name)
        if service.accepts_user_token() and service.required_user_scopes is None:
            missing.append(name)
    return unique_sorted(missing)


def required_user_scopes_from_services_report(
    services: Iterable[str],
) -> Tuple[List[str], List[str]]:
    """
    Required user scopes plus the services that could not contribute any.

    Returns:
        Tuple of (required scopes, services missing scope declarations).
    """
    services = list(services)
    return (
        required_user_scopes_from_services(services),
        services_missing_required_user_scopes(services),
    )


def _variant_scopes(service: ServiceDef, readonly: bool) -> Tuple[str, ...]:
    preferred, fallback = service.user_scopes.full, service.user_scopes.readonly
    if readonly:
        preferred, fallback = fallback, preferred
    return preferred or fallback


def suggested_user_oauth_scopes_from_services(
    services: Iterable[str], readonly: bool = False
) -> List[str]:
    """
    Login scopes suggested for the given services.

    The requested variant wins when declared, then the other variant, then
    the service's required scopes.
    """
    scopes: List[str] = []
    for name in normalize_services(services):
        service = get_service(name)
        scopes.extend(_variant_scopes(service, readonly) or service.required_user_scopes or ())
    return unique_sorted(scopes)


def expand_service_aliases(services: Iterable[str]) -> List[str]:
    expanded: List[str] = []
    for name in normalize_services(services):
        expanded.extend(USER_OAUTH_SERVICE_ALIASES.get(name, (name,)))
    return normalize_services(expanded)


def user_oauth_scopes_from_services(
    services: Iterable[str], readonly: bool = False
) -> List[str]:
    """
    Login scopes for a services-based user OAuth login.

    Aliases are expanded; an empty list means DEFAULT_USER_OAUTH_SERVICES.

    Raises:
        RegistryError: If a service is unknown, tenant-only or declares no scopes.
    """
    names = expand_service_aliases(services) or list(DEFAULT_USER_OAUTH_SERVICES)
    scopes: List[str] = []
    for name in names:
        service = get_service(name)
        if not service.accepts_user_token():
            raise RegistryError(f"service {name!r} does not require user OAuth")
        declared = _variant_scopes(service, readonly) or service.required_user_scopes
        if not declared:
            raise RegistryError(f"service {name!r} does not declare user OAuth scopes yet")
        scopes.extend(declared)
    return unique_sorted(scopes)


def list_user_oauth_services() -> List[str]:
    """Services usable in a services-based user login, sorted."""
    return sorted(
        name for name, service in REGISTRY.items()
        if service.accepts_user_token()
        and (
            service.user_scopes.full
            or service.user_scopes.readonly
            or service.required_user_scopes
        )
    )


def requirements_for_command(command: str) -> Optional[AuthRequirement]:
    """
    Compile the auth requirements of a command path.

    Args:
        command: Space separated command path.

    Returns:
        AuthRequirement, or None when the command has no registry entry.
        None means the requirements cannot be explained, not that no auth is needed.

    Raises:
        RegistryError: If the command maps to an unknown service.
    """
    services = services_for_command(command)
    if services is None:
        return None

    service_scopes: Dict[str, ServiceScopes] = {}
    for name in services:
        service = get_service(name)
        service_scopes[name] = ServiceScopes(
            required_user_scopes=unique_sorted(service.required_user_scopes or ()),
            suggested_readonly_scopes=suggested_user_oauth_scopes_from_services([name], True),
            suggested_scopes=suggested_user_oauth_scopes_from_services([name], False),
        )

    return AuthRequirement(
        command_path=" ".join(_command_parts(command)),
        services=services,
        token_types=token_types_from_services(services),
        requires_offline=requires_offline_from_services(services),
        service_scopes=MappingProxyType(service_scopes),
    )


def token_types_for_command(command: Optional[str]) -> Optional[List[str]]:
    """Allowed token types for a command, or None when it is unmapped."""
    if not command:
        return None
    requirement = requirements_for_command(command)
    return requirement.token_types if requirement else None


def login_command(scopes: Iterable[str], force_consent: bool = False) -> str:
    """Copy-pasteable user login command for a scope list."""
    command = f'{CLI_NAME} auth user login --scopes "{format_scopes(scopes)}"'
    if force_consent:
        command += " --force-consent"
    return command


def explain_command(command: str, readonly: bool = False) -> Dict[str, object]:
    """
    Build the ``auth explain`` payload for a command path.

    Raises:
        RegistryError: If the command has no registry mapping.
    """
    requirement = requirements_for_command(command)
    if requirement is None:
        raise RegistryError(f"no auth registry mapping found for command {command!r}")

    required, missing_decls = required_user_scopes_from_services_report(
        requirement.services
    )
    suggested: List[str] = []
    suggested_command = ""
    if requirement.uses_user_token:
        suggested = canonicalize_scopes(
            suggested_user_oauth_scopes_from_services(requirement.services, readonly)
            or required,
            require_offline=requirement.requires_offline,
        )
        if suggested:
            suggested_command = login_command(suggested)

    return {
        "command": requirement.command_path,
        "services": requirement.services,
        "token_types": requirement.token_types,
        "requires_offline": requirement.requires_offline,
        "required_user_scopes": required,
        "services_missing_required_user_scopes": missing_decls,
        "suggested_user_login_scopes": suggested,
        "suggested_user_login_command": suggested_command,
    }

