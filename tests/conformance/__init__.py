"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the clearing engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Deposit, custody and supply accounting invariants
2. atomicity.py - All-or-nothing operation semantics
3. price_discovery.py - Once-per-epoch clearing price

These tests use hypothesis for property-based testing.
"""
