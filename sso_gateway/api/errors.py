"""JSON error handlers for the application.

Clients only ever receive a short JSON body; details go to the log.
"""
from flask import jsonify, redirect, request
from werkzeug.exceptions import HTTPException

from sso_gateway.core.exceptions import IdentityError


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        message = getattr(error, "description", None) or "Invalid request"
        return jsonify({"error": "Bad Request", "message": str(message)}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        """Handle 401 Unauthorized errors."""
        return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return jsonify({"error": "Not Found", "message": "Resource not found"}), 404

    @app.errorhandler(IdentityError)
    def identity_error(error):
        """Login failures that escape a view still end as a login redirect."""
        app.logger.warning("Identity error outside callback (%s): %s", error.error_code, error)
        from sso_gateway.api.auth import get_gateway

        return redirect(get_gateway().error_location(error.error_code))

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        app.logger.error(f"Internal error: {error}", exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        app.logger.error(f"Unhandled exception on {request.path}: {error}", exc_info=True)
        return jsonify({"error": "Internal Server Error", "message": "An unexpected error occurred"}), 500
