"""
Campaign Gate Compliance Test Suite.

Property and scenario tests for:
- Permission set algebra and ownership override
- Audit hash determinism
- All-or-nothing export preflight
"""
