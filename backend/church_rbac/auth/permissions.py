"""Permission catalog and pure resolution rules for the church RBAC engine.

Design:
  - Modules and actions are closed `str` enums; persisted documents use
    `<module>.<action>` keys (e.g. "blog.update").
  - Each built-in role has a set of SEED defaults (defined here). Admins can
    replace a role's defaults at runtime; the persisted copy wins over the
    seed once saved.
  - Admins can grant/revoke individual permissions per user via
    `User.custom_permissions` (a JSON dict of {key: True/False} overrides).
  - `resolve_permission(role_defaults, overrides, module, action)` is the
    single decision rule: override if present, else role default, else deny.

`Manage` is never implied by the rules here. Call sites that treat Manage
as a superset must check it explicitly.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Iterable

logger = logging.getLogger(__name__)


# ── Catalog ─────────────────────────────────────────────────

class Module(str, enum.Enum):
    # Core
    DASHBOARD = "dashboard"
    USERS = "users"
    MEMBERS = "members"

    # Content management
    BLOG = "blog"
    EVENTS = "events"
    DEVOTIONALS = "devotionals"
    TRANSMISSIONS = "transmissions"
    PROJECTS = "projects"
    FORUM = "forum"
    LEADERSHIP = "leadership"

    # Church management
    VISITORS = "visitors"
    CALENDAR = "calendar"
    ASSISTANCE = "assistance"
    ASSISTIDOS = "assistidos"
    NOTIFICATIONS = "notifications"
    COMMUNICATION = "communication"
    ONG = "ong"

    # Financial
    FINANCE = "finance"
    DONATIONS = "donations"
    REPORTS = "reports"
    ASSETS = "assets"

    # System
    SETTINGS = "settings"
    PERMISSIONS = "permissions"
    AUDIT = "audit"
    BACKUP = "backup"
    HOME_BUILDER = "home_builder"


class Action(str, enum.Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "update"
    UPDATE = "update"  # alias of EDIT
    DELETE = "delete"
    EXPORT = "export"
    IMPORT = "import"
    APPROVE = "approve"
    MANAGE = "manage"


PermissionKey = tuple[Module, Action]
PermissionMap = dict[PermissionKey, bool]


MODULE_LABELS: dict[Module, str] = {
    Module.DASHBOARD: "Dashboard",
    Module.USERS: "Usuários",
    Module.MEMBERS: "Membros",
    Module.BLOG: "Blog",
    Module.EVENTS: "Eventos",
    Module.DEVOTIONALS: "Devocionais",
    Module.TRANSMISSIONS: "Transmissões",
    Module.PROJECTS: "Projetos",
    Module.FORUM: "Fórum",
    Module.LEADERSHIP: "Liderança",
    Module.VISITORS: "Visitantes",
    Module.CALENDAR: "Calendário",
    Module.ASSISTANCE: "Assistência",
    Module.ASSISTIDOS: "Assistidos",
    Module.NOTIFICATIONS: "Notificações",
    Module.COMMUNICATION: "Comunicação",
    Module.ONG: "Gerenciamento ONG",
    Module.FINANCE: "Finanças",
    Module.DONATIONS: "Doações",
    Module.REPORTS: "Relatórios",
    Module.ASSETS: "Patrimônio",
    Module.SETTINGS: "Configurações",
    Module.PERMISSIONS: "Permissões",
    Module.AUDIT: "Auditoria",
    Module.BACKUP: "Backup & Dados",
    Module.HOME_BUILDER: "Construtor da Home",
}

ACTION_LABELS: dict[Action, str] = {
    Action.VIEW: "Visualizar",
    Action.CREATE: "Criar",
    Action.EDIT: "Editar",
    Action.DELETE: "Excluir",
    Action.EXPORT: "Exportar",
    Action.IMPORT: "Importar",
    Action.APPROVE: "Aprovar",
    Action.MANAGE: "Gerenciar",
}


# ── Built-in roles ──────────────────────────────────────────

ADMIN_ROLE = "admin"

ROLE_LABELS: dict[str, str] = {
    "admin": "Administrador",
    "secretary": "Secretário",
    "professional": "Profissional",
    "leader": "Líder",
    "member": "Membro",
    "finance": "Finanças",
}

DEFAULT_ROLES: tuple[str, ...] = tuple(ROLE_LABELS)

_CRUD = (Action.VIEW, Action.CREATE, Action.EDIT, Action.DELETE)

ROLE_DEFAULTS: dict[str, dict[Module, tuple[Action, ...]]] = {
    "admin": {
        Module.DASHBOARD: (Action.VIEW, Action.MANAGE),
        Module.USERS: (*_CRUD, Action.MANAGE),
        Module.MEMBERS: (*_CRUD, Action.EXPORT, Action.IMPORT),
        Module.BLOG: (*_CRUD, Action.APPROVE),
        Module.EVENTS: (*_CRUD, Action.MANAGE),
        Module.DEVOTIONALS: _CRUD,
        Module.TRANSMISSIONS: _CRUD,
        Module.PROJECTS: (*_CRUD, Action.APPROVE),
        Module.FORUM: (*_CRUD, Action.MANAGE),
        Module.LEADERSHIP: (*_CRUD, Action.MANAGE),
        Module.VISITORS: (*_CRUD, Action.EXPORT),
        Module.CALENDAR: (Action.VIEW, Action.MANAGE),
        Module.ASSISTANCE: (*_CRUD, Action.APPROVE),
        Module.ASSISTIDOS: (*_CRUD, Action.MANAGE),
        Module.NOTIFICATIONS: (Action.VIEW, Action.CREATE, Action.MANAGE),
        Module.ONG: (*_CRUD, Action.EXPORT, Action.MANAGE),
        Module.FINANCE: (*_CRUD, Action.EXPORT, Action.MANAGE),
        Module.DONATIONS: (*_CRUD, Action.EXPORT),
        Module.REPORTS: (Action.VIEW, Action.EXPORT),
        Module.ASSETS: (*_CRUD, Action.EXPORT, Action.MANAGE),
        Module.SETTINGS: (Action.VIEW, Action.EDIT, Action.MANAGE),
        Module.PERMISSIONS: (Action.VIEW, Action.EDIT, Action.MANAGE),
        Module.AUDIT: (Action.VIEW, Action.EXPORT),
        Module.BACKUP: (Action.VIEW, Action.CREATE, Action.MANAGE),
        Module.HOME_BUILDER: (*_CRUD, Action.MANAGE),
    },

    "secretary": {
        Module.DASHBOARD: (Action.VIEW,),
        Module.USERS: (Action.VIEW, Action.EDIT),
        Module.MEMBERS: (Action.VIEW, Action.CREATE, Action.EDIT, Action.EXPORT),
        Module.BLOG: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.EVENTS: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.DEVOTIONALS: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.TRANSMISSIONS: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.PROJECTS: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.FORUM: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.VISITORS: (Action.VIEW, Action.CREATE, Action.EDIT, Action.EXPORT),
        Module.CALENDAR: (Action.VIEW, Action.MANAGE),
        Module.ASSISTIDOS: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.NOTIFICATIONS: (Action.VIEW, Action.CREATE),
        Module.REPORTS: (Action.VIEW, Action.EXPORT),
        Module.SETTINGS: (Action.VIEW,),
    },

    "professional": {
        Module.DASHBOARD: (Action.VIEW,),
        Module.ASSISTANCE: (Action.VIEW, Action.CREATE, Action.EDIT),
        Module.MEMBERS: (Action.VIEW,),
        Module.CALENDAR: (Action.VIEW,),
        Module.REPORTS: (Action.VIEW,),
    },

    "leader": {
        Module.DASHBOARD: (Action.VIEW,),
        Module.MEMBERS: (Action.VIEW,),
        Module.EVENTS: (Action.VIEW, Action.CREATE),
        Module.PROJECTS: (Action.VIEW, Action.CREATE),
        Module.CALENDAR: (Action.VIEW,),
    },

    "member": {
        Module.DASHBOARD: (Action.VIEW,),
        Module.EVENTS: (Action.VIEW,),
        Module.BLOG: (Action.VIEW,),
        Module.DEVOTIONALS: (Action.VIEW,),
        Module.TRANSMISSIONS: (Action.VIEW,),
        Module.PROJECTS: (Action.VIEW,),
        Module.FORUM: (Action.VIEW, Action.CREATE),
        Module.CALENDAR: (Action.VIEW,),
    },

    "finance": {
        Module.DASHBOARD: (Action.VIEW,),
        Module.FINANCE: (*_CRUD, Action.EXPORT, Action.MANAGE),
        Module.DONATIONS: (*_CRUD, Action.EXPORT),
        Module.REPORTS: (Action.VIEW, Action.EXPORT),
        Module.MEMBERS: (Action.VIEW,),
        Module.CALENDAR: (Action.VIEW,),
    },
}


def all_modules() -> list[Module]:
    return list(Module)


def all_actions() -> list[Action]:
    # Iterating an Enum skips aliases, so UPDATE is not listed twice.
    return list(Action)


def is_builtin_role(role: str) -> bool:
    return role in ROLE_DEFAULTS


def role_label(role: str) -> str:
    return ROLE_LABELS.get(role, role)


def role_seed_defaults(role: str) -> PermissionMap:
    """Seed grants for a built-in role; empty for anything else."""
    return {
        (module, action): True
        for module, actions in ROLE_DEFAULTS.get(role, {}).items()
        for action in actions
    }


# ── Parsing / serialization ─────────────────────────────────

def parse_module(value: Any) -> Module | None:
    """Coerce a module value or name to `Module`, or None if unknown."""
    if isinstance(value, Module):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Module(value)
    except ValueError:
        return Module.__members__.get(value.upper())


def parse_action(value: Any) -> Action | None:
    """Coerce an action value or name (e.g. "update", "Edit") to `Action`."""
    if isinstance(value, Action):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Action(value)
    except ValueError:
        return Action.__members__.get(value.upper())


def permission_key(module: Module, action: Action) -> str:
    return f"{module.value}.{action.value}"


def parse_permission_key(key: str) -> PermissionKey | None:
    module_part, sep, action_part = key.partition(".")
    if not sep:
        return None
    module = parse_module(module_part)
    action = parse_action(action_part)
    if module is None or action is None:
        return None
    return module, action


def _decode_legacy(doc: dict) -> PermissionMap:
    """Decode the {"granted": [...], "revoked": [...]} override format.

    Each list holds {"module": m, "actions": [...]} entries. A pair listed
    in both lists resolves to revoked. Malformed entries are dropped.
    """
    result: PermissionMap = {}
    for field, granted in (("granted", True), ("revoked", False)):
        entries = doc.get(field) or []
        if not isinstance(entries, list):
            logger.info(f"Dropping malformed {field!r} list {entries!r}")
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                logger.info(f"Dropping malformed {field!r} entry {entry!r}")
                continue
            module = parse_module(entry.get("module"))
            if module is None:
                logger.info(f"Dropping obsolete module {entry.get('module')!r}")
                continue
            actions = entry.get("actions") or []
            if not isinstance(actions, list):
                logger.info(f"Dropping malformed actions {actions!r} for module {module.value!r}")
                continue
            for raw_action in actions:
                action = parse_action(raw_action)
                if action is None:
                    logger.info(
                        f"Dropping obsolete action {raw_action!r} from module {module.value!r}"
                    )
                    continue
                if granted and result.get((module, action)) is False:
                    continue
                result[(module, action)] = granted
    return result


def is_legacy_document(doc: Any) -> bool:
    return isinstance(doc, dict) and ("granted" in doc or "revoked" in doc)


def decode_permission_document(doc: Any) -> PermissionMap:
    """Turn a persisted JSON document into a PermissionMap.

    Accepts the flat {"module.action": bool} format and the legacy
    granted/revoked format. Unknown modules or actions are dropped, and
    so is anything that is not a JSON object.
    """
    if not doc:
        return {}
    if not isinstance(doc, dict):
        logger.info(f"Dropping malformed permission document {doc!r}")
        return {}
    if is_legacy_document(doc):
        return _decode_legacy(doc)

    result: PermissionMap = {}
    for key, value in doc.items():
        parsed = parse_permission_key(key) if isinstance(key, str) else None
        if parsed is None:
            logger.info(f"Dropping obsolete permission key {key!r}")
            continue
        if not isinstance(value, bool):
            logger.info(f"Dropping permission key {key!r} with non-boolean value {value!r}")
            continue
        result[parsed] = value
    return result


def encode_permission_map(entries: PermissionMap) -> dict[str, bool]:
    return {
        permission_key(module, action): bool(granted)
        for (module, action), granted in sorted(
            entries.items(), key=lambda item: permission_key(*item[0])
        )
    }


def normalize_entries(entries: dict | Iterable) -> PermissionMap:
    """Accept a PermissionMap, a {"module.action": bool} dict, or
    an iterable of (module, action, granted) triples.

    Raises ValueError on an unknown module or action: writes are validated,
    only reads fail closed.
    """
    items: Iterable
    if isinstance(entries, dict):
        items = entries.items()
    else:
        items = (((module, action), granted) for module, action, granted in entries)

    result: PermissionMap = {}
    for key, granted in items:
        if isinstance(key, str):
            parsed = parse_permission_key(key)
            label = key
        else:
            module, action = parse_module(key[0]), parse_action(key[1])
            parsed = (module, action) if module and action else None
            label = f"{key[0]}.{key[1]}"
        if parsed is None:
            raise ValueError(f"Unknown permission: {label}")
        result[parsed] = bool(granted)
    return result


# ── Resolution ──────────────────────────────────────────────

def resolve_permission(
    role_defaults: PermissionMap,
    overrides: PermissionMap | None,
    module: Any,
    action: Any,
) -> bool:
    """Effective decision for one (module, action) pair.

    1. Unknown module or action → deny.
    2. A user override, when present, is returned verbatim.
    3. Otherwise the role default, defaulting to deny.
    """
    parsed_module = parse_module(module)
    parsed_action = parse_action(action)
    if parsed_module is None or parsed_action is None:
        return False

    key = (parsed_module, parsed_action)
    if overrides and key in overrides:
        return overrides[key]
    return role_defaults.get(key, False)


def resolve_permissions(
    role_defaults: PermissionMap,
    overrides: PermissionMap | None = None,
) -> list[str]:
    """Effective granted keys across the whole catalog, sorted."""
    return sorted(
        permission_key(module, action)
        for module in Module
        for action in Action
        if resolve_permission(role_defaults, overrides, module, action)
    )
