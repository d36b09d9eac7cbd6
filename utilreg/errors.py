# utilreg/errors.py
"""
Error taxonomy for the registry.

Every failure raised by a registry operation derives from RegistryError and
carries a stable code plus the HTTP status the server answers with.
"""


class RegistryError(Exception):
    """Base class for registry failures."""

    code = "registry_error"
    status = 400

    def __init__(self, message: str = ""):
        super().__init__(message)


class NotFound(RegistryError):
    """The referenced app_id has no record."""

    code = "not_found"
    status = 404

    def __init__(self, app_id: int = None, message: str = None):
        super().__init__(message or f"Application {app_id} not found")
        self.app_id = app_id


class Unauthorized(RegistryError):
    """The caller is not the application's current owner."""

    code = "unauthorized"
    status = 403

    def __init__(self, app_id: int = None, caller: str = None, message: str = None):
        super().__init__(
            message or f"{caller or '<anonymous>'} is not the owner of application {app_id}"
        )
        self.app_id = app_id
        self.caller = caller


class ArgumentMismatch(RegistryError, ValueError):
    """Parallel-array inputs have unequal lengths."""

    code = "argument_mismatch"
    status = 400


class ModuleNotConfigured(RegistryError):
    """A status update was attempted before an update module was set."""

    code = "module_not_configured"
    status = 409

    def __init__(self, app_id: int = None, message: str = None):
        super().__init__(message or f"Application {app_id} has no update module set")
        self.app_id = app_id


class InvalidOwner(RegistryError, ValueError):
    """An empty identity was given where an owner is required."""

    code = "invalid_owner"
    status = 400


class LedgerLocked(RegistryError):
    """Another process already holds the data directory."""

    code = "ledger_locked"
    status = 503


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (RegistryError, NotFound, Unauthorized, ArgumentMismatch,
                ModuleNotConfigured, InvalidOwner, LedgerLocked)
}
