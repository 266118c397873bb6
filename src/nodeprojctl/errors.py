"""Exception groupings shared by the command line and the interactive menu."""
from __future__ import annotations

from .config import ConfigError
from .executor import CommandError
from .exit_codes import ExitCode
from .projects import ProjectError, ProjectNotFoundError, ProjectStepError
from .providers import Pm2Error, SshdError
from .scripts import ScriptError
from .services import ServiceError, ServiceExistsError, ServiceNotFoundError
from .sftp import SftpError
from .state import RegistryError
from .templates import TemplateError

DOMAIN_ERRORS: tuple[type[Exception], ...] = (
    ValueError,
    ConfigError,
    ProjectError,
    ServiceError,
    SftpError,
    Pm2Error,
    SshdError,
    CommandError,
    RegistryError,
    ScriptError,
    TemplateError,
    OSError,
)

_VALIDATION_ERRORS = (
    ValueError,
    ProjectNotFoundError,
    ProjectError,
    ServiceNotFoundError,
    ServiceExistsError,
)
_PROVIDER_ERRORS = (ServiceError, SftpError, Pm2Error, SshdError, CommandError)


def exit_code_for(exc: BaseException) -> ExitCode:
    """Return the exit code a library exception maps to.

    Step failures are checked first: they subclass :class:`ProjectError` but
    report a host-side failure rather than bad input.
    """
    if isinstance(exc, ProjectStepError):
        return ExitCode.PROVIDER
    if isinstance(exc, _VALIDATION_ERRORS):
        return ExitCode.VALIDATION
    if isinstance(exc, _PROVIDER_ERRORS):
        return ExitCode.PROVIDER
    return ExitCode.ENVIRONMENT


__all__ = ["DOMAIN_ERRORS", "exit_code_for"]
