"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the will system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Value is neither created nor lost by will operations
2. atomicity.py - Failed operations change nothing
3. idempotency.py - Duplicate events and re-applied events change nothing
4. determinism.py - The replica is a pure function of the event sequence
5. shares.py - Share cap and single guardian
6. temporal.py - Phase gating of execution

These tests use hypothesis for property-based testing.
"""
