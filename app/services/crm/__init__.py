"""CRM Service Module.

Submodule Structure:
    crm/
    └── inbox/  - Multi-platform message ingestion, sending and sync
"""
