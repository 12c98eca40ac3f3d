class ErpError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ErpError):
    status_code = 404


class InvalidState(ErpError):
    status_code = 400


class Conflict(ErpError):
    status_code = 409


class InsufficientStock(ErpError):
    status_code = 409

    def __init__(self, product_name: str, required: int, available: int):
        super().__init__(f"Insufficient stock for {product_name}: need {required}, have {available}")
        self.product_name = product_name
        self.required = required
        self.available = available
