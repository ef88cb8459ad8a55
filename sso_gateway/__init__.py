"""Federated login gateway package.

To use the Flask app:
    from sso_gateway.flask_app import create_app

To use the reconciliation core without Flask:
    from sso_gateway.core.reconciliation import ReconciliationEngine
    from sso_gateway.core.directory import DirectoryService, GraphQLClient
"""
# Note: flask_app is not imported here so the core stays usable without Flask
