"""Custom exceptions for the Mini ERP application."""


class MiniErpError(Exception):
    """Base exception for all application errors."""
    error_code = 'internal_error'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['error'] = self.error_code
        rv['status'] = 'error'
        return rv


class ValidationError(MiniErpError):
    """Exception raised for malformed or missing input."""
    error_code = 'validation_error'

    def __init__(self, message, errors=None):
        payload = {'errors': errors} if errors else None
        super().__init__(message, 400, payload)


class NotFoundError(MiniErpError):
    """Exception raised when a resource is not found."""
    error_code = 'not_found'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InsufficientStockError(MiniErpError):
    """Raised when a sale would drive a product's stock below zero."""
    error_code = 'insufficient_stock'

    def __init__(self, product_name, required, available):
        self.product_name = product_name
        self.required = required
        self.available = available
        message = (
            f"Insufficient stock for {product_name}: "
            f"requested {required}, available {available}"
        )
        super().__init__(message, 409, {'requested': required, 'available': available})


class ConstraintViolationError(MiniErpError):
    """Raised when a delete or reversal is blocked by existing references."""
    error_code = 'constraint_violation'

    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class PersistenceError(MiniErpError):
    """Storage layer unavailable or the atomic unit was aborted."""
    error_code = 'persistence_failure'

    def __init__(self, message="The operation could not be completed, please retry"):
        super().__init__(message, 500)
