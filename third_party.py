"""
third_party.py - Identify known third-party services from request URLs.

Usage:
    classifier = default_classifier()
    entity = classifier.classify("https://www.googletagmanager.com/gtm.js?id=GTM-XXXX")
    # EntityInfo(name="Google Tag Manager", category="tag-manager", ...)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol
from urllib.parse import urlparse

import requests

import config
from net_guardrails import DEFAULT_HEADERS, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

# Same shape as the third-party-web dataset: name, category, domains.
# A domain matches itself and every subdomain; a leading "*." is optional.
ENTITIES: list[dict[str, Any]] = [
    # Tag managers
    {"name": "Google Tag Manager", "category": "tag-manager", "domains": ["*.googletagmanager.com"]},
    {"name": "Tealium", "category": "tag-manager", "domains": ["*.tiqcdn.com", "*.tealiumiq.com"]},
    {"name": "Adobe Tag Manager", "category": "tag-manager", "domains": ["*.adobedtm.com"]},
    # Analytics
    {"name": "Google Analytics", "category": "analytics", "domains": ["*.google-analytics.com", "*.analytics.google.com"]},
    {"name": "Hotjar", "category": "analytics", "domains": ["*.hotjar.com", "*.hotjar.io"]},
    {"name": "Segment", "category": "analytics", "domains": ["*.segment.com", "*.segment.io"]},
    {"name": "Microsoft Clarity", "category": "analytics", "domains": ["*.clarity.ms"]},
    {"name": "Mixpanel", "category": "analytics", "domains": ["*.mixpanel.com", "*.mxpnl.com"]},
    {"name": "Amplitude", "category": "analytics", "domains": ["*.amplitude.com"]},
    {"name": "Adobe Analytics", "category": "analytics", "domains": ["*.omtrdc.net", "*.2o7.net"]},
    {"name": "New Relic", "category": "analytics", "domains": ["*.newrelic.com", "*.nr-data.net"]},
    # Advertising
    {"name": "Google/Doubleclick Ads", "category": "ad", "domains": [
        "*.doubleclick.net", "*.googlesyndication.com", "*.googleadservices.com", "*.adservice.google.com",
    ]},
    {"name": "Criteo", "category": "ad", "domains": ["*.criteo.com", "*.criteo.net"]},
    {"name": "Taboola", "category": "ad", "domains": ["*.taboola.com"]},
    {"name": "Outbrain", "category": "ad", "domains": ["*.outbrain.com"]},
    {"name": "Amazon Ads", "category": "ad", "domains": ["*.amazon-adsystem.com"]},
    {"name": "Microsoft Advertising", "category": "ad", "domains": ["*.bat.bing.com"]},
    {"name": "TikTok", "category": "ad", "domains": ["*.tiktok.com", "*.ttwstatic.com"]},
    {"name": "LinkedIn Ads", "category": "ad", "domains": ["*.ads.linkedin.com", "*.licdn.com"]},
    # Social
    {"name": "Facebook", "category": "social", "domains": ["*.facebook.net", "*.facebook.com", "*.fbcdn.net"]},
    {"name": "Twitter", "category": "social", "domains": ["*.twitter.com", "*.twimg.com", "*.x.com"]},
    {"name": "Pinterest", "category": "social", "domains": ["*.pinterest.com", "*.pinimg.com"]},
    {"name": "YouTube", "category": "video", "domains": ["*.youtube.com", "*.ytimg.com", "*.youtube-nocookie.com"]},
    {"name": "Vimeo", "category": "video", "domains": ["*.vimeo.com", "*.vimeocdn.com"]},
    # Marketing / customer success
    {"name": "HubSpot", "category": "marketing", "domains": ["*.hs-scripts.com", "*.hubspot.com", "*.hs-analytics.net"]},
    {"name": "Klaviyo", "category": "marketing", "domains": ["*.klaviyo.com"]},
    {"name": "Mailchimp", "category": "marketing", "domains": ["*.chimpstatic.com", "*.list-manage.com"]},
    {"name": "Intercom", "category": "customer-success", "domains": ["*.intercom.io", "*.intercomcdn.com"]},
    {"name": "Drift", "category": "customer-success", "domains": ["*.driftt.com", "*.drift.com"]},
    {"name": "Zendesk", "category": "customer-success", "domains": ["*.zdassets.com", "*.zendesk.com"]},
    # Consent
    {"name": "OneTrust", "category": "consent-provider", "domains": ["*.onetrust.com", "*.cookielaw.org"]},
    {"name": "Cookiebot", "category": "consent-provider", "domains": ["*.cookiebot.com"]},
    {"name": "Usercentrics", "category": "consent-provider", "domains": ["*.usercentrics.eu"]},
    # CDNs and libraries
    {"name": "Google Fonts", "category": "cdn", "domains": ["fonts.googleapis.com", "fonts.gstatic.com"]},
    {"name": "Google CDN", "category": "cdn", "domains": ["ajax.googleapis.com"]},
    {"name": "jsDelivr CDN", "category": "cdn", "domains": ["*.jsdelivr.net"]},
    {"name": "Cloudflare CDN", "category": "cdn", "domains": ["cdnjs.cloudflare.com"]},
    {"name": "unpkg", "category": "cdn", "domains": ["*.unpkg.com"]},
    {"name": "jQuery CDN", "category": "cdn", "domains": ["code.jquery.com"]},
    {"name": "Font Awesome CDN", "category": "cdn", "domains": ["*.fontawesome.com"]},
    # Payments / maps
    {"name": "Stripe", "category": "utility", "domains": ["*.stripe.com", "*.stripe.network"]},
    {"name": "PayPal", "category": "utility", "domains": ["*.paypal.com", "*.paypalobjects.com"]},
    {"name": "Google Maps", "category": "utility", "domains": ["maps.googleapis.com", "maps.gstatic.com"]},
    {"name": "reCAPTCHA", "category": "utility", "domains": ["www.recaptcha.net"]},
]


@dataclass(frozen=True)
class EntityInfo:
    name: str
    category: str
    domain: str


class ThirdPartyClassifier(Protocol):
    def classify(self, url: str) -> Optional[EntityInfo]: ...


def _normalize_domain(pattern: str) -> str:
    domain = (pattern or "").strip().lower()
    if domain.startswith("*."):
        domain = domain[2:]
    return domain.rstrip(".")


class EntityClassifier:
    """Host-suffix lookup over an entity table."""

    def __init__(self, entities: Iterable[dict[str, Any]] = ENTITIES):
        self._by_domain: dict[str, EntityInfo] = {}
        for entity in entities:
            self.add(entity)

    def add(self, entity: dict[str, Any]) -> None:
        name = str(entity.get("name") or "").strip()
        if not name:
            return
        category = str(entity.get("category") or "other")
        for pattern in entity.get("domains") or []:
            domain = _normalize_domain(pattern)
            if domain:
                self._by_domain[domain] = EntityInfo(name=name, category=category, domain=domain)

    def __len__(self) -> int:
        return len(self._by_domain)

    def classify(self, url: str) -> Optional[EntityInfo]:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return None
        labels = host.split(".")
        for i in range(len(labels) - 1):
            entity = self._by_domain.get(".".join(labels[i:]))
            if entity:
                return entity
        return None


def load_entities_file(path: str) -> list[dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Entity file {path} must contain a JSON list")
    return data


def fetch_entities(url: str, timeout: int = DEFAULT_TIMEOUT) -> list[dict[str, Any]]:
    resp = requests.get(url, headers=DEFAULT_HEADERS, timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, list):
        raise ValueError(f"Entity list at {url} must be a JSON list")
    return data


def default_classifier(
    entities_file: str = config.ENTITIES_FILE,
    entities_url: str = config.ENTITIES_URL,
) -> EntityClassifier:
    """Built-in table extended with the configured file / URL entity lists."""
    classifier = EntityClassifier()
    if entities_file:
        for entity in load_entities_file(entities_file):
            classifier.add(entity)
        logger.info(f"Loaded third-party entities from {entities_file}")
    if entities_url:
        for entity in fetch_entities(entities_url):
            classifier.add(entity)
        logger.info(f"Loaded third-party entities from {entities_url}")
    return classifier
