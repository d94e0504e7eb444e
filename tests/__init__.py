"""
Test suite for the recoload load generator.

This package contains:
- unit/: pure logic (ramp, builders, checks, metrics, thresholds, profiles)
- integration/: drivers, orchestrator, and CLI wired together against
  fake HTTP sessions
"""
