"""
Custom Exception Hierarchy for Delegated Admin Manager

This module provides the exception hierarchy used across the package. Every
error carries structured context (error code, context dictionary, underlying
cause and an optional recovery suggestion) so that the CLI and the bulk
consent orchestrator can report the original remote failure without
replacing it with a generic message.

Hierarchy:
    DelegatedAdminError
    ├── AuthError
    │   ├── ListenerBindError
    │   ├── AuthorizationDeniedError
    │   └── CredentialRefreshError
    ├── OperationTimeoutError
    │   ├── AuthorizationTimeoutError
    │   ├── TerminationTimeoutError
    │   └── DeletionTimeoutError
    ├── RelationshipError
    │   ├── InvalidStateError
    │   ├── RelationshipNotActiveError
    │   └── RoleNotApprovedError
    ├── RemoteRequestError
    │   ├── RemoteConflictError
    │   └── DirectoryTransportError
    ├── ConsentConfigurationError
    ├── TemplateNotFoundError
    └── CredentialStoreError
"""

from typing import Any, Dict, Iterable, Optional


class DelegatedAdminError(Exception):
    """
    Base exception class for all Delegated Admin Manager errors.

    Carries an error code, a context dict (remote status and code when the
    directory answered), the underlying cause and a recovery suggestion that
    the CLI prints under the message.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


def _with_context(kwargs: Dict[str, Any], **values: Any) -> Dict[str, Any]:
    context = dict(kwargs.get("context") or {})
    for key, value in values.items():
        if value is not None:
            context[key] = value
    kwargs["context"] = context
    return kwargs


# Authentication errors
class AuthError(DelegatedAdminError):
    """Base class for authentication and token errors."""

    pass


class ListenerBindError(AuthError):
    """Raised when the loopback callback listener cannot bind its port."""

    def __init__(self, message: str, port: Optional[int] = None, **kwargs: Any) -> None:
        self.port = port
        kwargs = _with_context(kwargs, port=port)
        kwargs.setdefault("error_code", "LISTENER_BIND_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Free the port or pass a redirect URI with a different port",
        )
        super().__init__(message, **kwargs)


class AuthorizationDeniedError(AuthError):
    """Raised when the authorization callback reports an error."""

    def __init__(
        self,
        error: str,
        error_description: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.error = error
        self.error_description = error_description
        message = f"Authorization denied: {error}"
        if error_description:
            message += f" - {error_description}"
        kwargs.setdefault("error_code", "AUTHORIZATION_DENIED")
        super().__init__(message, **kwargs)


class CredentialRefreshError(AuthError):
    """Raised when a refresh-token grant is rejected by the token endpoint."""

    def __init__(
        self,
        message: str,
        tenant_id: Optional[str] = None,
        status_code: Optional[int] = None,
        remote_code: Optional[str] = None,
        remote_message: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.tenant_id = tenant_id
        self.status_code = status_code
        self.remote_code = remote_code
        self.remote_message = remote_message
        kwargs = _with_context(
            kwargs,
            tenant_id=tenant_id,
            status_code=status_code,
            remote_code=remote_code,
        )
        kwargs.setdefault("error_code", "CREDENTIAL_REFRESH_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Run 'delegated-admin auth init' to obtain a new refresh token",
        )
        if remote_message:
            message = f"{message}: {remote_message}"
        super().__init__(message, **kwargs)


# Timeouts
class OperationTimeoutError(DelegatedAdminError):
    """Base class for errors raised when waiting on remote work gives up.

    Callers catch this to decide whether to poll longer instead of abandoning.
    """

    def __init__(
        self, message: str, timeout_value: Optional[float] = None, **kwargs: Any
    ) -> None:
        self.timeout_value = timeout_value
        kwargs = _with_context(kwargs, timeout=timeout_value)
        super().__init__(message, **kwargs)


class AuthorizationTimeoutError(OperationTimeoutError):
    """Raised when no authorization callback arrives before the timeout."""

    def __init__(self, timeout_value: float, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "AUTHORIZATION_TIMEOUT")
        super().__init__(
            f"No authorization callback received within {timeout_value:g}s",
            timeout_value=timeout_value,
            **kwargs,
        )


class TerminationTimeoutError(OperationTimeoutError):
    """Raised when a terminated relationship does not settle in time."""

    def __init__(
        self,
        relationship_id: str,
        timeout_value: float,
        last_status: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.relationship_id = relationship_id
        self.last_status = last_status
        kwargs = _with_context(
            kwargs, relationship_id=relationship_id, last_status=last_status
        )
        kwargs.setdefault("error_code", "TERMINATION_TIMEOUT")
        kwargs.setdefault(
            "recovery_suggestion",
            "The terminate request was issued; run terminate again later to keep polling",
        )
        super().__init__(
            f"Relationship {relationship_id} did not reach 'terminated' within {timeout_value:g}s",
            timeout_value=timeout_value,
            **kwargs,
        )


class DeletionTimeoutError(OperationTimeoutError):
    """Raised when a deleted application keeps showing up in a tenant."""

    def __init__(
        self, tenant_id: str, application_id: str, attempts: int, **kwargs: Any
    ) -> None:
        self.tenant_id = tenant_id
        self.application_id = application_id
        self.attempts = attempts
        kwargs = _with_context(
            kwargs, tenant_id=tenant_id, application_id=application_id
        )
        kwargs.setdefault("error_code", "DELETION_TIMEOUT")
        super().__init__(
            f"Application {application_id} still present in tenant {tenant_id} "
            f"after {attempts} checks",
            **kwargs,
        )


# Relationship and assignment errors
class RelationshipError(DelegatedAdminError):
    """Base class for relationship state errors."""

    pass


class InvalidStateError(RelationshipError):
    """Raised when an action is not legal for the relationship's status."""

    def __init__(
        self,
        relationship_id: str,
        status: str,
        action: str,
        reason: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.relationship_id = relationship_id
        self.status = status
        self.action = action
        kwargs = _with_context(
            kwargs, relationship_id=relationship_id, status=status, action=action
        )
        kwargs.setdefault("error_code", "INVALID_RELATIONSHIP_STATE")
        message = f"Cannot {action} relationship {relationship_id} in status '{status}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, **kwargs)


class RelationshipNotActiveError(RelationshipError):
    """Raised when assignments are mutated on a relationship that is not active."""

    def __init__(self, relationship_id: str, status: str, **kwargs: Any) -> None:
        self.relationship_id = relationship_id
        self.status = status
        kwargs = _with_context(kwargs, relationship_id=relationship_id, status=status)
        kwargs.setdefault("error_code", "RELATIONSHIP_NOT_ACTIVE")
        kwargs.setdefault(
            "recovery_suggestion",
            "Wait for the customer to approve the relationship",
        )
        super().__init__(
            f"Relationship {relationship_id} is '{status}', access assignments "
            "require an active relationship",
            **kwargs,
        )


class RoleNotApprovedError(RelationshipError):
    """Raised when a requested role is outside the relationship's approved roles."""

    def __init__(
        self,
        role_id: str,
        relationship_id: str,
        approved: Optional[Iterable[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.role_id = role_id
        self.relationship_id = relationship_id
        self.approved = sorted(approved or [])
        kwargs = _with_context(kwargs, relationship_id=relationship_id, role_id=role_id)
        kwargs.setdefault("error_code", "ROLE_NOT_APPROVED")
        super().__init__(
            f"Role {role_id} is not approved on relationship {relationship_id}",
            **kwargs,
        )


# Remote request errors
class RemoteRequestError(DelegatedAdminError):
    """Raised when the directory service answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        remote_code: Optional[str] = None,
        remote_message: Optional[str] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        self.remote_code = remote_code
        self.remote_message = remote_message
        self.method = method
        self.url = url
        kwargs = _with_context(
            kwargs,
            status_code=status_code,
            remote_code=remote_code,
            method=method,
            url=url,
        )
        kwargs.setdefault("error_code", "REMOTE_REQUEST_FAILED")
        if remote_message:
            message = f"{message}: {remote_message}"
        super().__init__(message, **kwargs)


class RemoteConflictError(RemoteRequestError):
    """Raised on 409/412: the resource exists or the etag is stale."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "REMOTE_CONFLICT")
        kwargs.setdefault(
            "recovery_suggestion",
            "Re-read the resource to obtain its current etag before retrying",
        )
        super().__init__(message, **kwargs)


class DirectoryTransportError(RemoteRequestError):
    """Raised when a request never produced a response (DNS, TLS, reset...)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "DIRECTORY_UNREACHABLE")
        super().__init__(message, **kwargs)


# Configuration / setup errors
class ConsentConfigurationError(DelegatedAdminError):
    """Raised when the consent request cannot be built. Aborts a whole batch."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "CONSENT_CONFIG_INVALID")
        super().__init__(message, **kwargs)


class TemplateNotFoundError(DelegatedAdminError):
    """Raised when a role template name is unknown."""

    def __init__(self, name: str, available: Iterable[str] = (), **kwargs: Any) -> None:
        self.name = name
        self.available = sorted(available)
        kwargs.setdefault("error_code", "TEMPLATE_NOT_FOUND")
        if self.available:
            kwargs.setdefault(
                "recovery_suggestion", f"Available templates: {', '.join(self.available)}"
            )
        super().__init__(f"Unknown role template: {name}", **kwargs)


class CredentialStoreError(DelegatedAdminError):
    """Raised when a credential bundle cannot be read or written."""

    def __init__(self, message: str, name: Optional[str] = None, **kwargs: Any) -> None:
        kwargs = _with_context(kwargs, name=name)
        kwargs.setdefault("error_code", "CREDENTIAL_STORE_ERROR")
        super().__init__(message, **kwargs)
