"""
Error Handling System
Provides user-friendly error messages and structured error responses
"""

from flask import jsonify
from werkzeug.exceptions import HTTPException
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception class for API errors"""
    status_code = 500
    message = "An error occurred"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None,
                 error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.status_code = status_code or self.status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details
        }


class ValidationError(APIError):
    """Validation error (400)"""
    status_code = 400
    message = "Validation error"


class NotFoundError(APIError):
    """Resource not found (404)"""
    status_code = 404
    message = "Resource not found"


class ConflictError(APIError):
    """Resource conflict (409)"""
    status_code = 409
    message = "Resource conflict"


class SessionNotFoundError(NotFoundError):
    """Unknown or expired session id (404)"""
    message = "Invalid or expired session id"


class PendingNotFoundError(NotFoundError):
    """Unknown pending duplicate entry (404)"""
    message = "Pending duplicate entry not found"


class ExtractionError(APIError):
    """Archive could not be verified or extracted (422)"""
    status_code = 422
    message = "The archive is corrupt or incomplete, please upload it again"


class RosterRejectedError(ValidationError):
    """No sheet of an uploaded roster produced usable records"""
    message = "No valid data found in the roster file"


class ResolutionMismatchError(ValidationError):
    """Selections do not cover every ambiguous record of a pending entry"""
    message = "A selection is required for every duplicate record"


def register_error_handlers(app):
    """Register error handlers with Flask app"""

    @app.errorhandler(APIError)
    def handle_api_error(error: APIError):
        """Handle custom API errors"""
        logger.warning(
            f"API Error: {error.error_code}",
            extra={
                "error_code": error.error_code,
                "error_message": error.message,
                "status_code": error.status_code,
                "details": error.details
            }
        )
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        return response

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        """Handle werkzeug HTTP errors (404, 405, 413, ...)"""
        error_code = (error.name or "HTTP_ERROR").upper().replace(" ", "_")
        return jsonify({
            "error": True,
            "error_code": error_code,
            "message": error.description,
            "status_code": error.code
        }), error.code

    @app.errorhandler(Exception)
    def handle_generic_exception(error: Exception):
        """Handle all other exceptions"""
        logger.error(f"Unhandled exception: {str(error)}", exc_info=True)
        return jsonify({
            "error": True,
            "error_code": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
            "status_code": 500,
            "details": {
                "exception_type": type(error).__name__
            }
        }), 500
