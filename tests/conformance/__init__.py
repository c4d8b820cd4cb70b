"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending platform.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. lending_invariants.py - Flag implications, single vote, single approval, pool accounting
2. lending_atomicity.py - All-or-nothing operations and rollback
3. reentrancy.py - No re-entry while a value transfer is outstanding

These tests use hypothesis for property-based testing.
"""
