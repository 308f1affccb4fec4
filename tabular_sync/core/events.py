"""
Notifications emitted by synchronization and deployment.

Callers receive these through plain callables; nothing here holds
state or expects a return value, except the credential prompt.
"""

from __future__ import annotations


from dataclasses import dataclass
from enum import Enum
from typing import Callable


class MessageKind(str, Enum):
    """What a validation message is about."""

    RELATIONSHIP = "relationship"
    TABLE = "table"
    GENERAL = "general"


class Severity(str, Enum):
    """Severity of a validation message."""

    INFORMATIONAL = "informational"
    WARNING = "warning"
    ERROR = "error"


class DeploymentStatus(str, Enum):
    """Status of one deployment work item, or of the whole deployment."""

    DEPLOYING = "deploying"
    SUCCESS = "success"
    ERROR = "error"
    CANCEL = "cancel"


@dataclass(frozen=True)
class ValidationMessage:
    """A message produced while synchronizing or validating a model."""

    scope: str
    message: str
    kind: MessageKind = MessageKind.GENERAL
    severity: Severity = Severity.INFORMATIONAL

    def __str__(self) -> str:
        return f"[{self.severity.value.upper()}] {self.kind.value}: {self.message}"


@dataclass(frozen=True)
class DeploymentMessage:
    """Progress of one deployment work item (the metadata row or a table)."""

    work_item: str
    message: str
    status: DeploymentStatus


@dataclass(frozen=True)
class DeploymentComplete:
    """Terminal notification of a deployment."""

    status: DeploymentStatus
    error_message: str | None = None


@dataclass(frozen=True)
class CredentialRequest:
    """Credentials needed for a connection using account impersonation."""

    connection_name: str
    account: str | None


@dataclass(frozen=True)
class CredentialResponse:
    """Answer to a credential request; ``cancelled`` aborts the deployment."""

    account: str | None = None
    password: str | None = None
    cancelled: bool = False


ValidationCallback = Callable[[ValidationMessage], None]
DeploymentMessageCallback = Callable[[DeploymentMessage], None]
DeploymentCompleteCallback = Callable[[DeploymentComplete], None]
CredentialCallback = Callable[[CredentialRequest], "CredentialResponse | None"]


def ignore_message(message: object) -> None:
    """Default sink for notifications nobody subscribed to."""
    return None
