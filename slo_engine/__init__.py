"""
slo_engine package initialization.

Load generator and SLO verifier for a URL-shortening service: a ramp
controller drives worker threads through a weighted scenario mix, every
request is recorded into a shared metric sink, and declarative thresholds
turn the final snapshot into a pass/fail verdict.
"""

__version__ = "0.1.0"
