"""Named role templates: preconfigured (security group, roles) pairs.

A template is applied to an active relationship in one go by
``AccessAssignmentService.apply_template``. Built-in templates cover common
partner setups; more can be loaded from a YAML file:

    templates:
      tier1-support:
        description: First line support
        assignments:
          - group: GDAP Helpdesk
            roles: [Helpdesk Administrator, Global Reader]
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from ..exceptions import TemplateNotFoundError

logger = logging.getLogger(__name__)

# Entra ID built-in role template ids
WELL_KNOWN_ROLES: Dict[str, str] = {
    "Global Administrator": "62e90394-69f5-4237-9190-012177145e10",
    "Global Reader": "f2ef992c-3afb-46b9-b7cf-a126ee74c451",
    "Directory Readers": "88d8e3e3-8f55-4a1e-953a-9b9898b8876b",
    "Helpdesk Administrator": "729827e3-9c14-49f7-bb1b-9608f156bbb8",
    "User Administrator": "fe930be7-5e62-47db-91af-98c3a49a38b1",
    "Password Administrator": "966707d0-3269-4727-9be2-8c3a10f19b9d",
    "License Administrator": "4d6ac14f-3453-41d0-bef9-a3e0c569773a",
    "Service Support Administrator": "f023fd81-a637-4b56-95fd-791ac0226033",
    "Security Reader": "5d6b6bb7-de71-4623-b4af-96380a352509",
    "Security Administrator": "194ae4cb-b126-40b2-bd5b-6091b380977d",
    "Security Operator": "5f2222b1-57c3-48ba-8ad5-d4759f1fde6f",
    "Exchange Administrator": "29232cdf-9323-42fd-ade2-1d097af3e4de",
    "SharePoint Administrator": "f28a1f50-f6e7-4571-818b-6a12f2af6b6c",
    "Teams Administrator": "69091246-20e8-4a56-aa4d-066075b2a7a8",
    "Intune Administrator": "3a2c62db-5318-420d-8d74-23affee5d9d5",
    "Cloud Application Administrator": "158c047a-c907-4556-b7ef-446551a6b5f7",
    "Application Administrator": "9b895d92-2cd3-44c7-9d02-a6ac2d5ea5c3",
    "Privileged Role Administrator": "e8611ab8-c189-46e8-94e1-60213ab1f814",
    "Privileged Authentication Administrator": "7be44c8a-adaf-4e2a-84d6-ab2649e08a13",
    "Authentication Administrator": "c4e39bd9-1100-46d3-8c65-fb160da0071f",
    "Conditional Access Administrator": "b1be1c3e-b65d-4f19-8427-f6fa0d97feb9",
    "Billing Administrator": "b0f54661-2d74-4c50-afa3-1ec803f12efe",
    "Reports Reader": "4a5d8f65-41da-4de4-8968-e035b65339cf",
}

_ROLE_IDS_LOWER = {name.lower(): role_id for name, role_id in WELL_KNOWN_ROLES.items()}


def resolve_role(role: str) -> str:
    """Map a role display name to its id; ids pass through unchanged."""
    return _ROLE_IDS_LOWER.get(role.strip().lower(), role.strip())


def resolve_roles(roles: Iterable[str]) -> List[str]:
    return [resolve_role(role) for role in roles]


def role_name(role_id: str) -> str:
    for name, known_id in WELL_KNOWN_ROLES.items():
        if known_id == role_id:
            return name
    return role_id


@dataclass(frozen=True)
class TemplateEntry:
    """One security group and the roles it should receive."""

    group_name: str
    role_ids: Tuple[str, ...]


@dataclass(frozen=True)
class RoleTemplate:
    name: str
    entries: Tuple[TemplateEntry, ...]
    description: str = ""

    @property
    def role_ids(self) -> frozenset:
        """Every role the template needs approved on the relationship."""
        return frozenset(role for entry in self.entries for role in entry.role_ids)


def _template(name: str, description: str, pairs: Iterable[Tuple[str, List[str]]]) -> RoleTemplate:
    return RoleTemplate(
        name=name,
        description=description,
        entries=tuple(TemplateEntry(group, tuple(resolve_roles(roles))) for group, roles in pairs),
    )


BUILTIN_TEMPLATES: Dict[str, RoleTemplate] = {
    t.name: t
    for t in (
        _template(
            "read-only",
            "Directory-wide read access",
            [("GDAP Global Readers", ["Global Reader"])],
        ),
        _template(
            "helpdesk",
            "First line user support",
            [
                ("GDAP Helpdesk", ["Helpdesk Administrator", "Service Support Administrator"]),
                ("GDAP Global Readers", ["Global Reader"]),
            ],
        ),
        _template(
            "security-operations",
            "Security monitoring and response",
            [
                ("GDAP Security Operators", ["Security Operator", "Security Reader"]),
                ("GDAP Security Administrators", ["Security Administrator"]),
            ],
        ),
        _template(
            "full-admin",
            "Workload administration without Global Administrator",
            [
                ("GDAP User Administrators", ["User Administrator", "License Administrator"]),
                ("GDAP Exchange Administrators", ["Exchange Administrator"]),
                ("GDAP SharePoint Administrators", ["SharePoint Administrator"]),
                ("GDAP Teams Administrators", ["Teams Administrator"]),
                ("GDAP Intune Administrators", ["Intune Administrator"]),
                ("GDAP Global Readers", ["Global Reader"]),
            ],
        ),
    )
}


@dataclass
class RoleTemplateRegistry:
    """Built-in templates plus any loaded from YAML (loaded ones win)."""

    templates: Dict[str, RoleTemplate] = field(default_factory=lambda: dict(BUILTIN_TEMPLATES))

    def get(self, name: str) -> RoleTemplate:
        try:
            return self.templates[name]
        except KeyError:
            raise TemplateNotFoundError(name, available=self.templates) from None

    def names(self) -> List[str]:
        return sorted(self.templates)

    def load_yaml(self, path: str) -> int:
        """Merge templates from a YAML file; returns how many were loaded."""
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        loaded = 0
        for name, spec in (data.get("templates") or {}).items():
            pairs = [
                (item["group"], list(item.get("roles") or []))
                for item in spec.get("assignments") or []
            ]
            if not pairs or any(not roles for _, roles in pairs):
                raise ValueError(f"Template '{name}' needs assignments with at least one role each")
            self.templates[name] = _template(name, spec.get("description", ""), pairs)
            loaded += 1
        logger.info(f"Loaded {loaded} role templates from {path}")
        return loaded

    @classmethod
    def from_file(cls, path: Optional[str]) -> "RoleTemplateRegistry":
        registry = cls()
        if path:
            registry.load_yaml(path)
        return registry
