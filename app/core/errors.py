from fastapi import HTTPException


class LedgerError(HTTPException):
    """Base for errors raised by the settlement engine.

    Subclasses carry their HTTP status so routers can let them propagate.
    """

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class ValidationError(LedgerError):
    status_code = 400


class AuthorizationError(LedgerError):
    status_code = 403


class NotFoundError(LedgerError):
    status_code = 404


class NoDebtFoundError(LedgerError):
    # Not a failure: settle-balance turns this into a "no_debts" result.
    status_code = 409


class PersistenceError(LedgerError):
    status_code = 500
