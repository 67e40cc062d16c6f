"""
Tests for interaction discovery, priority selection and the page frontier.
"""

from silentwatch.models import Interaction
from silentwatch.observe.discovery import (
    TIER_ABOVE_FOLD,
    TIER_BUTTON,
    TIER_FORM,
    TIER_INTERNAL_LINK,
    TIER_LOW_PRIORITY,
    TIER_NAV_ATTRIBUTE_BUTTON,
    TIER_ROLE_BUTTON,
    compute_priority,
    discover_interactions,
    internal_page_links,
    is_external_url,
    select_interactions,
)
from silentwatch.observe.frontier import PageFrontier, normalize_path, normalize_url

from fakes import FakePage, make_button, make_link

BASE = "http://localhost:3000/"


def make_interaction(kind="button", dom_index=0, **overrides):
    fields = {"type": kind, "selector": f"#{kind}-{dom_index}", "dom_index": dom_index}
    fields.update(overrides)
    return Interaction(**fields)


# =============================================================================
# Priority tiers
# =============================================================================

class TestComputePriority:
    """Tests for candidate priority tiers."""

    def test_form_first(self):
        """Forms are the highest tier."""
        assert compute_priority(make_interaction("form")) == TIER_FORM

    def test_internal_link(self):
        """Same-origin path links are tier 2."""
        assert compute_priority(make_interaction("link", href="/about")) == TIER_INTERNAL_LINK

    def test_button_with_data_href(self):
        """Buttons carrying a navigation attribute are tier 3."""
        assert compute_priority(make_interaction("button", data_href="/next")) == TIER_NAV_ATTRIBUTE_BUTTON

    def test_role_button_with_id(self):
        """Role buttons with a stable id are tier 4."""
        assert compute_priority(make_interaction("role_button", has_id=True)) == TIER_ROLE_BUTTON

    def test_above_fold_button(self):
        """Visible buttons without navigation hints are the above-fold tier."""
        assert compute_priority(make_interaction("button")) == TIER_ABOVE_FOLD

    def test_footer_link_low_priority(self):
        """Footer links drop to the lowest tier."""
        assert compute_priority(make_interaction("link", href="/terms", in_footer=True)) == TIER_LOW_PRIORITY

    def test_below_fold_button(self):
        """Buttons below the fold fall back to the generic button tier."""
        assert compute_priority(make_interaction("button", above_fold=False)) == TIER_BUTTON

    def test_below_fold_other_low_priority(self):
        """Non-button elements below the fold are lowest."""
        assert compute_priority(make_interaction("other", above_fold=False)) == TIER_LOW_PRIORITY

    def test_anchor_only_link_not_internal(self):
        """Fragment links are not navigation candidates."""
        assert compute_priority(make_interaction("link", href="#top")) != TIER_INTERNAL_LINK


class TestSelectInteractions:
    """Tests for capped selection."""

    def test_fifty_candidates_cap_thirty(self):
        """50 candidates with a cap of 30 keep the 30 best and report the cap."""
        candidates = [make_interaction("button", dom_index=i) for i in range(40)]
        candidates += [make_interaction("form", dom_index=40 + i) for i in range(10)]

        selected, coverage = select_interactions(candidates, 30)

        assert len(selected) == 30
        assert all(c.type == "form" for c in selected[:10])
        assert [c.dom_index for c in selected[10:]] == list(range(20))
        assert coverage == {
            "candidates_discovered": 50,
            "candidates_selected": 30,
            "cap": 30,
            "capped": True,
        }

    def test_mixed_candidates_forms_then_links(self):
        """Forms come first, then internal links, each in document order."""
        candidates = []
        for i in range(50):
            if i % 5 == 0:
                candidates.append(make_interaction("form", dom_index=i))
            elif i % 5 == 1:
                candidates.append(make_interaction("link", dom_index=i, href=f"/page-{i}"))
            else:
                candidates.append(make_interaction("button", dom_index=i))

        selected, coverage = select_interactions(candidates, 30)

        forms = [c.dom_index for c in selected[:10]]
        links = [c.dom_index for c in selected[10:20]]
        assert coverage["capped"] is True
        assert len(selected) == 30
        assert all(c.type == "form" for c in selected[:10])
        assert forms == sorted(forms)
        assert all(c.type == "link" for c in selected[10:20])
        assert links == sorted(links)
        assert [c.dom_index for c in selected[20:]] == [2, 3, 4, 7, 8, 9, 12, 13, 14, 17]

    def test_under_cap_not_capped(self):
        """Fewer candidates than the cap are all selected."""
        candidates = [make_interaction("button", dom_index=i) for i in range(3)]

        selected, coverage = select_interactions(candidates, 30)

        assert len(selected) == 3
        assert coverage["capped"] is False

    def test_ties_keep_document_order(self):
        """Within a tier, document order decides."""
        candidates = [make_interaction("button", dom_index=i) for i in (5, 1, 3)]

        selected, _ = select_interactions(candidates, 10)

        assert [c.dom_index for c in selected] == [1, 3, 5]


class TestDiscoverInteractions:
    """Tests for discovery against a page."""

    def test_external_and_mailto(self):
        """External links are flagged and mailto links are skipped."""
        page = FakePage(BASE)
        page.add_page(BASE, interactions=[
            make_link("#about", "/about", dom_index=0),
            make_link("#ext", "https://other.example.com/", dom_index=1),
            make_link("#mail", "mailto:a@b.c", dom_index=2),
            make_button("#save", dom_index=3),
        ])

        found = discover_interactions(page, BASE)

        assert [i.selector for i in found] == ["#about", "#ext", "#save"]
        assert [i.is_external for i in found] == [False, True, False]
        assert all(i.page_url == BASE for i in found)

    def test_internal_page_links(self):
        """Only internal path links feed the frontier, as absolute URLs."""
        interactions = [
            make_interaction("link", href="/about"),
            make_interaction("link", href="https://other.example.com/", is_external=True),
            make_interaction("link", href="#top"),
            make_interaction("button"),
        ]

        assert internal_page_links(interactions, BASE) == ["http://localhost:3000/about"]

    def test_is_external_url(self):
        """Relative and same-origin URLs are internal."""
        assert not is_external_url("/x", BASE)
        assert not is_external_url("http://localhost:3000/y", BASE)
        assert is_external_url("http://localhost:4000/y", BASE)
        assert not is_external_url("javascript:void(0)", BASE)


# =============================================================================
# Frontier
# =============================================================================

class TestNormalize:
    """Tests for URL and path normalization."""

    def test_trailing_slash_and_fragment(self):
        """Trailing slashes and fragments do not create new pages."""
        assert normalize_url("http://Localhost:3000/a/#x") == "http://localhost:3000/a"

    def test_root_kept(self):
        """The root path stays a single slash."""
        assert normalize_url("http://localhost:3000") == "http://localhost:3000/"

    def test_path_from_url(self):
        """Paths are extracted from absolute URLs, query dropped."""
        assert normalize_path("http://localhost:3000/cart/?step=2") == "/cart"


class TestPageFrontier:
    """Tests for the breadth-first frontier."""

    def test_breadth_first_order(self):
        """Pages are visited in discovery order."""
        frontier = PageFrontier(BASE, max_unique_urls=10)
        frontier.add(BASE + "a")
        frontier.add(BASE + "b")

        visited = []
        while frontier.has_next():
            visited.append(frontier.next_url())

        assert visited == [BASE, BASE + "a", BASE + "b"]

    def test_duplicates_ignored(self):
        """Equivalent URLs are queued once."""
        frontier = PageFrontier(BASE, max_unique_urls=10)

        assert frontier.add(BASE + "a") is True
        assert frontier.add(BASE + "a/") is False
        assert frontier.add(BASE + "a#frag") is False

    def test_cap_drops_and_reports(self):
        """URLs beyond the cap are dropped and counted."""
        frontier = PageFrontier(BASE, max_unique_urls=2)
        frontier.add(BASE + "a")
        frontier.add(BASE + "b")
        frontier.add(BASE + "c")

        summary = frontier.get_summary()

        assert frontier.capped
        assert frontier.dropped == [BASE + "b", BASE + "c"]
        assert summary["frontier_capped"] is True
        assert summary["pages_discovered"] == 4
