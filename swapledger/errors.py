from __future__ import annotations


class EscrowError(Exception):
    """Base class for every rejected ledger operation.

    Raising one inside ``session.begin()`` rolls the whole operation back.
    """

    code = "ESCROW_ERROR"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class AuthorizationError(EscrowError):
    code = "UNAUTHORIZED_CALLER"
    status_code = 403


class InvalidSignature(AuthorizationError):
    code = "INVALID_SIGNATURE"
    status_code = 401


class TimingError(EscrowError):
    code = "INVALID_TIME"
    status_code = 409


class SecretMismatchError(EscrowError):
    code = "INVALID_SECRET"
    status_code = 400


class ImmutablesMismatchError(EscrowError):
    code = "INVALID_IMMUTABLES"
    status_code = 404


class TransferFailure(EscrowError):
    code = "TRANSFER_FAILED"
    status_code = 409


class InsufficientBalance(TransferFailure):
    code = "INSUFFICIENT_BALANCE"


class UnderfundedCreation(EscrowError):
    code = "INSUFFICIENT_ESCROW_BALANCE"
    status_code = 400


class CrossLegDeadlineViolation(EscrowError):
    code = "INVALID_CREATION_TIME"
    status_code = 400


class EscrowAlreadyExists(EscrowError):
    code = "ESCROW_EXISTS"
    status_code = 409


class InvalidTimelocks(EscrowError):
    code = "INVALID_TIMELOCKS"
    status_code = 400


class UnsupportedOperation(EscrowError):
    code = "UNSUPPORTED_OPERATION"
    status_code = 405


class InvalidOrder(EscrowError):
    code = "INVALID_ORDER"
    status_code = 400


class OrderAlreadyFilled(EscrowError):
    code = "ORDER_FILLED"
    status_code = 409
