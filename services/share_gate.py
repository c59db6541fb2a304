"""
Access control for shared analytics links.

A widget's report is reachable through an unguessable token. If the owner
sets a password, the link is locked until that one shared password is
supplied. Nothing is cached: every request resolves the token again, so a
rotated token stops working immediately.

Wrong passwords only bump the attempt counter. There is no lockout or
throttling on this check.
"""

from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass, replace
from typing import Callable, Optional

from werkzeug.security import check_password_hash, generate_password_hash

TOKEN_BYTES = 16


class GateState(enum.Enum):
    NOT_FOUND = 'not_found'
    OPEN = 'open'
    LOCKED = 'locked'


@dataclass(frozen=True)
class ShareGate:
    widget_id: str
    widget_name: str
    token: str
    password_hash: Optional[str] = None


@dataclass(frozen=True)
class GateResolution:
    state: GateState
    gate: Optional[ShareGate] = None
    attempts: int = 0

    @property
    def widget_id(self) -> Optional[str]:
        return self.gate.widget_id if self.gate else None

    @property
    def widget_name(self) -> Optional[str]:
        return self.gate.widget_name if self.gate else None


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def hash_share_password(password: Optional[str]) -> Optional[str]:
    """Hash a share password; an empty value turns protection off."""
    if not password:
        return None
    return generate_password_hash(password)


def resolve(token: Optional[str], lookup: Callable[[str], Optional[ShareGate]]) -> GateResolution:
    if not token:
        return GateResolution(GateState.NOT_FOUND)
    gate = lookup(token)
    if gate is None:
        return GateResolution(GateState.NOT_FOUND)
    if not gate.password_hash:
        return GateResolution(GateState.OPEN, gate)
    return GateResolution(GateState.LOCKED, gate)


def authenticate(resolution: GateResolution, supplied_password: Optional[str]) -> GateResolution:
    if resolution.state is not GateState.LOCKED:
        return resolution
    if supplied_password and check_password_hash(resolution.gate.password_hash, supplied_password):
        return replace(resolution, state=GateState.OPEN)
    return replace(resolution, attempts=resolution.attempts + 1)


def rotate(widget_id: str, store: Callable[[str, str], object]) -> str:
    """Give the widget a fresh token. Links using the old one become invalid."""
    token = generate_token()
    store(widget_id, token)
    return token
