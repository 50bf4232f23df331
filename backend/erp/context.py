# Overview: Explicit actor/tenant context threaded through guards and audit calls.

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ActorContext:
    """
    Who is acting, for which tenant, from where.

    Built once per request by the auth decorator (or by the CLI for system
    actions) and passed explicitly to every service call that guards or audits.
    """
    org_id: int
    user_id: int | None
    user_email: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def system(cls, org_id: int) -> "ActorContext":
        return cls(org_id=org_id, user_id=None, user_email="system")

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles

    def has_permission(self, code: str) -> bool:
        return "SYSTEM_ADMIN" in self.permissions or code in self.permissions
