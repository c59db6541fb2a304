"""Dashboard sidebar entries and the role rules that decide who sees them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class NavItem:
    endpoint: str
    label: str
    admin_only: bool = False
    agency_only: bool = False


NAV_ITEMS = (
    NavItem('dashboard', 'Overview'),
    NavItem('widgets', 'Widgets'),
    NavItem('clients', 'Clients', admin_only=True),
    NavItem('leads', 'Leads', admin_only=True),
    NavItem('analytics_dashboard', 'Analytics'),
    NavItem('agencies', 'Agencies', admin_only=True),
    NavItem('samples', 'Samples', admin_only=True),
    NavItem('testimonials', 'Testimonials', admin_only=True),
    NavItem('settings', 'Settings'),
    NavItem('agency_settings', 'Agency Settings', agency_only=True),
    NavItem('site_settings', 'Site Settings', admin_only=True),
)

DASHBOARD_ROLES = ('admin', 'agency')


def is_visible(item: NavItem, role: str) -> bool:
    if role == 'admin':
        return not item.agency_only
    if role == 'agency':
        return not item.admin_only or item.agency_only
    return not item.admin_only and not item.agency_only


def visible_nav_items(role: str) -> List[NavItem]:
    return [item for item in NAV_ITEMS if is_visible(item, role)]


def can_enter_dashboard(role: str) -> bool:
    return role in DASHBOARD_ROLES
