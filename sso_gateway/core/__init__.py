"""Core login reconciliation logic.

This module provides the identity reconciliation and session logic,
independent of HTTP frameworks.

Architecture:
    - Pure Python (no Flask dependencies in core logic)
    - Collaborators injected (store, directory, audit), no module singletons
    - Testable with fakes instead of HTTP mocking

Module Structure:
    - directory/         : Remote identity directory client (GraphQL)
    - reconciliation.py  : Profile -> canonical local user
    - session.py         : Session binding and rehydration
    - gateway.py         : Login attempt sequencing and redirects
    - store.py           : Local user store protocol + in-memory store
    - audit.py           : Signed audit trail of login events
    - exceptions.py      : Error taxonomy with redirect error codes
    - models.py          : IdentityProfile, DirectoryRecord, LocalUser

Usage Pattern:
    These modules are NOT auto-imported; import explicitly when needed:
        from sso_gateway.core.reconciliation import ReconciliationEngine
        from sso_gateway.core.gateway import AuthGateway
"""
