from __future__ import annotations

from typing import Literal

ErrorCategory = Literal["retryable", "fatal"]


class CaasBrokerException(Exception):
    pass


class IntegrityException(CaasBrokerException):
    pass


class NotFoundException(CaasBrokerException):
    pass


class ParameterValidationException(CaasBrokerException):
    pass


class RenderError(CaasBrokerException):
    def __init__(self, template_id: str, message: str) -> None:
        self.template_id = template_id
        super().__init__(f"Failed to render manifest {template_id!r}: {message}")


class ClusterCallError(CaasBrokerException):
    """Raised for a non-2xx cluster API response or a transport failure.

    ``status_code`` is None when no response was received at all.
    """

    def __init__(
        self,
        *,
        method: str,
        url: str,
        status_code: int | None,
        body: str,
        category: ErrorCategory,
    ) -> None:
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body
        self.category = category
        super().__init__(self._build_message())

    @property
    def retryable(self) -> bool:
        return self.category == "retryable"

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    def _build_message(self) -> str:
        detail = self.body.strip()
        if len(detail) > 400:
            detail = f"{detail[:397]}..."
        return (
            f"Cluster call {self.method} {self.url} failed "
            f"(category={self.category}, status={self.status_code}, detail={detail!r})"
        )


class TokenExtractionError(CaasBrokerException):
    pass


class ProvisioningError(CaasBrokerException):
    def __init__(self, *, step: str, namespace: str, cause: Exception) -> None:
        self.step = step
        self.namespace = namespace
        self.cause = cause
        super().__init__(f"Provisioning step {step!r} failed for namespace {namespace}: {cause}")
