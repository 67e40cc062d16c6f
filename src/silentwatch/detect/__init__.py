"""
Detection layer: classification over finished traces.

Modules:
    matcher - Expectation binding and per-trace classification
    observed - Runtime-derived OBSERVED expectations and repeat policy
    confidence - Versioned confidence policy and scoring
    findings - Finding construction with evidence
    truth - Run-level verdict and truth block
"""
