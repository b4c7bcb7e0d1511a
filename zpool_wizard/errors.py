"""Exceptions raised by the wizard components"""

from typing import Optional


class WizardError(Exception):
    """Base class for all errors surfaced to the caller"""

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"type": self.kind, "message": str(self)}


class InputError(WizardError):
    """Missing or invalid pool name, device path or selection"""


class InspectionError(WizardError):
    """A device or pool query could not run"""


class PreconditionError(WizardError):
    """The requested action does not fit the current pool state"""


class ConfirmationDeclined(WizardError):
    """The user did not approve erasing the device"""


class EngineFailure(WizardError):
    """A pool-mutating command returned a non-zero status"""

    def __init__(self, operation: str, device: str, returncode: Optional[int] = None,
                 output: str = ""):
        self.operation = operation
        self.device = device
        self.returncode = returncode
        self.output = output.strip() if output else ""

        message = f"{operation} failed for {device}"
        if returncode is not None:
            message += f" (exit status {returncode})"
        if self.output:
            message += f": {self.output}"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "operation": self.operation,
            "device": self.device,
            "returncode": self.returncode,
        })
        return data


class ProvisioningError(WizardError):
    """A remote volume could not be provisioned"""


class NamingCollisionExhausted(ProvisioningError):
    """No unique volume name was found within the attempt limit"""


class RemoteServiceError(ProvisioningError):
    """The remote volume or metadata service returned an error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RemoteAuthenticationError(RemoteServiceError):
    """The API token was rejected"""


class VolumeNameConflict(RemoteServiceError):
    """The service reported the volume name as taken during creation"""


class AttachmentTimeout(RemoteServiceError):
    """The volume did not show up as attached in time"""
