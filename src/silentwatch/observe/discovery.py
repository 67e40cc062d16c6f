"""Interaction discovery and deterministic priority selection."""

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from ..models import Interaction

logger = logging.getLogger(__name__)

# Priority tiers, lower runs first
TIER_FORM = 1
TIER_INTERNAL_LINK = 2
TIER_NAV_ATTRIBUTE_BUTTON = 3
TIER_ROLE_BUTTON = 4
TIER_ABOVE_FOLD = 5
TIER_BUTTON = 6
TIER_LOW_PRIORITY = 7

NON_NAVIGABLE_SCHEMES = ("mailto:", "tel:", "javascript:")

DISCOVERY_SCRIPT = """() => {
  const visible = (el) => {
    const style = window.getComputedStyle(el);
    return style.visibility !== 'hidden' && style.display !== 'none' && el.getClientRects().length > 0;
  };
  const selectorFor = (el) => {
    if (el.id) return '#' + CSS.escape(el.id);
    const testId = el.getAttribute('data-testid');
    if (testId) return '[data-testid="' + testId.replace(/"/g, '\\\\"') + '"]';
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && node !== document.body) {
      let index = 1;
      let sibling = node.previousElementSibling;
      while (sibling) { if (sibling.tagName === node.tagName) index++; sibling = sibling.previousElementSibling; }
      parts.unshift(node.tagName.toLowerCase() + ':nth-of-type(' + index + ')');
      node = node.parentElement;
    }
    return 'body > ' + parts.join(' > ');
  };
  const viewportHeight = window.innerHeight;
  const nodes = Array.from(document.querySelectorAll('form, a[href], button, [role="button"], input[type="submit"], input[type="button"]'));
  const results = [];
  nodes.forEach((el, domIndex) => {
    if (!visible(el)) return;
    const tag = el.tagName.toLowerCase();
    if (tag !== 'form' && el.closest('form') && (el.type === 'submit' || tag === 'input')) return;
    let type = 'other';
    if (tag === 'form') type = 'form';
    else if (tag === 'a') type = 'link';
    else if (tag === 'button' || tag === 'input') type = 'button';
    else if (el.getAttribute('role') === 'button') type = 'role_button';
    const rect = el.getBoundingClientRect();
    results.push({
      type: type,
      selector: selectorFor(el),
      label: ((el.getAttribute('aria-label') || el.textContent || el.value || '') + '').trim().slice(0, 80),
      href: tag === 'a' ? el.getAttribute('href') : null,
      data_href: el.getAttribute('data-href'),
      form_action: tag === 'form' ? el.getAttribute('action') : null,
      dom_index: domIndex,
      above_fold: rect.top < viewportHeight,
      in_footer: !!el.closest('footer'),
      has_id: !!el.id,
      has_test_id: el.hasAttribute('data-testid')
    });
  });
  return results;
}"""


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def is_external_url(url: Optional[str], base_url: str) -> bool:
    """True when ``url`` resolves to a different origin than ``base_url``."""
    if not url or url.startswith(NON_NAVIGABLE_SCHEMES) or url.startswith("#"):
        return False
    absolute = urljoin(base_url, url)
    if not absolute.startswith(("http://", "https://", "file:")):
        return False
    return origin_of(absolute) != origin_of(base_url)


def is_internal_path_link(interaction: Interaction) -> bool:
    href = interaction.href
    if interaction.type != "link" or not href or interaction.is_external:
        return False
    return not href.startswith("#") and not href.startswith(NON_NAVIGABLE_SCHEMES)


def compute_priority(interaction: Interaction) -> int:
    """Priority tier for one candidate."""
    if interaction.type == "form":
        return TIER_FORM
    if interaction.type == "link" and interaction.in_footer:
        return TIER_LOW_PRIORITY
    if is_internal_path_link(interaction):
        return TIER_INTERNAL_LINK
    if interaction.type in ("button", "role_button") and interaction.data_href:
        return TIER_NAV_ATTRIBUTE_BUTTON
    if interaction.type == "role_button" and (interaction.has_id or interaction.has_test_id):
        return TIER_ROLE_BUTTON
    if interaction.in_footer:
        return TIER_LOW_PRIORITY
    if interaction.above_fold:
        return TIER_ABOVE_FOLD
    if interaction.type in ("button", "role_button"):
        return TIER_BUTTON
    return TIER_LOW_PRIORITY


def sort_candidates(candidates: List[Interaction]) -> List[Interaction]:
    """Tier first, then document order. Stable for equal keys."""
    return sorted(candidates, key=lambda c: (compute_priority(c), c.dom_index))


def select_interactions(candidates: List[Interaction], cap: int) -> Tuple[List[Interaction], Dict[str, Any]]:
    """
    Pick at most ``cap`` candidates in priority order.

    Returns:
        Tuple of (selected, coverage) where coverage has candidates_discovered,
        candidates_selected, cap and capped
    """
    ordered = sort_candidates(candidates)
    selected = ordered[:cap]
    coverage = {
        "candidates_discovered": len(candidates),
        "candidates_selected": len(selected),
        "cap": cap,
        "capped": len(candidates) > cap,
    }
    return selected, coverage


def discover_interactions(page, base_url: str) -> List[Interaction]:
    """Discover candidate interactions on the current page."""
    raw: List[Dict[str, Any]] = page.evaluate(DISCOVERY_SCRIPT) or []
    page_url = page.url
    interactions = []
    for item in raw:
        href = item.get("href")
        if href and href.startswith(("mailto:", "tel:")):
            continue
        interaction = Interaction.from_dict(item)
        interaction.page_url = page_url
        interaction.is_external = is_external_url(href, base_url)
        interactions.append(interaction)

    logger.debug(f"Discovered {len(interactions)} interactions on {page_url}")
    return interactions


def internal_page_links(interactions: List[Interaction], page_url: str) -> List[str]:
    """Absolute URLs of internal links, in document order."""
    links = []
    for interaction in interactions:
        if is_internal_path_link(interaction):
            links.append(urljoin(page_url, interaction.href))
    return links
