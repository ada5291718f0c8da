"""
Test suite for clob_ledger

Contains:
- tests/unit/          : Unit tests for individual modules and settlement scenarios
- tests/fake_ledger.py : In-memory JSON Ledger API served through httpx.MockTransport
"""
