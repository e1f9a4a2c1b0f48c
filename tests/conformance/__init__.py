"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the transaction ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - Rejected writes leave no trace
2. history_replay.py - History reproduces the record, append-only
3. network_isolation.py - Scoped operations stay on the current network
4. retention.py - Truncation only evicts resolved history
5. ordering.py - Insertion order and unique-nonce limits
6. concurrency.py - Mutations from concurrent threads serialize

These tests use hypothesis for property-based testing.
"""
