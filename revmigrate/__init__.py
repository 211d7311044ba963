"""
Revisioned Data Access Layer and Migration Toolkit

Data access and migration tooling for a multilingual review site whose
records keep an append-only revision history.

Supports:
- Revisioned entities (create, branch, soft-delete, history queries)
- Schema validation including multilingual strings
- Batch migration from RethinkDB to PostgreSQL in dependency order
- Foreign-key reconciliation for references the source never enforced
- Post-migration count, sample, constraint and schema validation
- Reverse-order rollback and JSON/text run reports
"""

__version__ = "0.1.0"
