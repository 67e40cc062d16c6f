"""
Observation layer: everything that touches the browser.

Modules:
    budget - Immutable scan caps and the elapsed-time clock
    retry - Bounded retry of transient Playwright errors
    discovery - Interaction discovery and priority selection
    frontier - Breadth-first page queue with a unique-URL cap
    runner - Single-interaction observation window
    scan - Scan coordinator tying pages, runner and verdict together
"""
