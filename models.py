"""
Typed records for the rows stored in the VideoPop database.

Optional columns are explicit ``Optional`` fields so templates and services
never deal with raw ``sqlite3.Row`` objects or loosely shaped dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional

EVENT_TYPES = ('view', 'click', 'close', 'play', 'pause')
WIDGET_STATUSES = ('active', 'paused', 'draft')
WIDGET_POSITIONS = ('bottom-left', 'bottom-right')
WIDGET_TRIGGERS = ('time', 'scroll', 'exit_intent')
LEAD_STATUSES = ('new', 'contacted', 'qualified', 'converted')
ROLES = ('admin', 'agency', 'user')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from the database; naive values are UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _pick(cls, row) -> Dict[str, Any]:
    keys = set(row.keys())
    return {f.name: row[f.name] for f in fields(cls) if f.name in keys}


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    email: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'Client':
        return cls(**_pick(cls, row))


@dataclass(frozen=True)
class Widget:
    id: str
    name: str
    video_url: str
    status: str = 'draft'
    client_id: Optional[str] = None
    agency_id: Optional[str] = None
    video_type: str = 'url'
    video_orientation: str = 'vertical'
    person_name: Optional[str] = None
    person_title: Optional[str] = None
    person_avatar: Optional[str] = None
    cta_text: Optional[str] = None
    cta_url: Optional[str] = None
    cta_color: Optional[str] = None
    position: str = 'bottom-right'
    trigger_type: str = 'time'
    trigger_value: Optional[int] = None
    primary_color: Optional[str] = None
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    border_radius: Optional[int] = None
    custom_css: Optional[str] = None
    animation: Optional[str] = None
    analytics_token: Optional[str] = None
    analytics_password: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'Widget':
        return cls(**_pick(cls, row))

    @property
    def is_active(self) -> bool:
        return self.status == 'active'

    @property
    def has_share_password(self) -> bool:
        return bool(self.analytics_password)

    def public_config(self) -> Dict[str, Any]:
        """Fields the embed script is allowed to see."""
        return {
            'id': self.id,
            'video_url': self.video_url,
            'video_type': self.video_type,
            'video_orientation': self.video_orientation or 'vertical',
            'person_name': self.person_name,
            'person_title': self.person_title,
            'person_avatar': self.person_avatar,
            'cta_text': self.cta_text,
            'cta_url': self.cta_url,
            'cta_color': self.cta_color,
            'position': self.position,
            'trigger_type': self.trigger_type,
            'trigger_value': self.trigger_value,
            'primary_color': self.primary_color,
            'background_color': self.background_color,
            'text_color': self.text_color,
            'border_radius': self.border_radius,
            'animation': self.animation,
        }


@dataclass(frozen=True)
class Event:
    """A single recorded widget interaction. Never updated after insert."""

    id: str
    widget_id: str
    event_type: str
    created_at: datetime
    visitor_id: Optional[str] = None
    page_url: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'Event':
        values = _pick(cls, row)
        values['created_at'] = parse_timestamp(values.get('created_at'))
        return cls(**values)


@dataclass(frozen=True)
class Lead:
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    website: Optional[str] = None
    company: Optional[str] = None
    message: Optional[str] = None
    status: str = 'new'
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'Lead':
        return cls(**_pick(cls, row))

    def notification_payload(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'website': self.website,
            'company': self.company,
            'message': self.message,
            'created_at': self.created_at,
        }


@dataclass(frozen=True)
class Testimonial:
    id: str
    name: str
    quote: str
    display_order: int = 0
    is_active: bool = True
    title: Optional[str] = None
    company: Optional[str] = None
    avatar_url: Optional[str] = None
    rating: Optional[int] = 5

    @classmethod
    def from_row(cls, row) -> 'Testimonial':
        values = _pick(cls, row)
        values['is_active'] = bool(values.get('is_active', 1))
        return cls(**values)


@dataclass(frozen=True)
class ShowcaseSample:
    id: str
    title: str
    image_url: str
    display_order: int = 0
    is_active: bool = True
    website_url: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'ShowcaseSample':
        values = _pick(cls, row)
        values['is_active'] = bool(values.get('is_active', 1))
        return cls(**values)


@dataclass(frozen=True)
class Agency:
    id: str
    user_id: int
    agency_name: str
    widget_limit: int = 5
    widgets_used: int = 0
    logo_url: Optional[str] = None
    branding_text: Optional[str] = None
    branding_url: Optional[str] = None
    custom_domain: Optional[str] = None
    notification_email: Optional[str] = None
    webhook_url: Optional[str] = None
    owner_email: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'Agency':
        return cls(**_pick(cls, row))

    @property
    def at_widget_limit(self) -> bool:
        return self.widgets_used >= self.widget_limit


@dataclass(frozen=True)
class SiteSettings:
    id: str
    hero_title: str = 'Create Engaging Video Popups'
    hero_subtitle: str = 'Boost conversions with personalized video widgets'
    branding_text: str = 'Powered by VideoPop'
    branding_url: str = '/'
    logo_url: Optional[str] = None
    demo_video_url: Optional[str] = None
    pricing_enabled: bool = True
    price_amount: int = 29
    price_currency: str = 'USD'
    admin_email: Optional[str] = None
    smtp_from: Optional[str] = None
    webhook_url: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'SiteSettings':
        values = _pick(cls, row)
        values['pricing_enabled'] = bool(values.get('pricing_enabled', 1))
        return cls(**values)
