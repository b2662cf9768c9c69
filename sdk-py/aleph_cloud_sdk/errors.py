"""
Error taxonomy for provisioning workflows
"""

from decimal import Decimal
from typing import Optional, Union


class AlephSDKError(Exception):
    """Base class for every error raised by the SDK."""


class RequestFailed(AlephSDKError):
    """A downstream collaborator failed while a workflow step was running."""

    def __init__(self, cause: Union[BaseException, str]):
        self.cause = cause
        text = str(cause) if not isinstance(cause, str) else cause
        super().__init__(f"Request failed: {text}")


class InvalidResponse(AlephSDKError):
    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(f"Invalid response: {detail}" if detail else "Invalid response")


class InvalidAccount(AlephSDKError):
    def __init__(self):
        super().__init__("Invalid or missing account")


class InvalidParameter(AlephSDKError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid parameter: {name}")


class ConnectYourWallet(AlephSDKError):
    def __init__(self):
        super().__init__("Please connect your wallet")


class ConnectYourPaymentWallet(AlephSDKError):
    def __init__(self):
        super().__init__("Please connect your payment wallet")


class InstanceNotFound(AlephSDKError):
    def __init__(self, instance_id: Optional[str] = None):
        self.instance_id = instance_id
        suffix = f": {instance_id}" if instance_id else ""
        super().__init__(f"Instance not found{suffix}")


class InvalidNode(AlephSDKError):
    def __init__(self):
        super().__init__("Invalid node")


class InvalidCRNAddress(AlephSDKError):
    def __init__(self):
        super().__init__("Invalid CRN address")


class InstanceStartupFailed(AlephSDKError):
    """Reservation or allocation notification on the hosting node failed."""

    def __init__(self, node_hash: str, detail: str):
        self.node_hash = node_hash
        self.detail = detail
        super().__init__(f"Instance {node_hash} startup failed: {detail}")


class MaxFlowRate(AlephSDKError):
    def __init__(self):
        super().__init__("Maximum flow rate exceeded")


class InsufficientBalance(AlephSDKError):
    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"Insufficient balance. You need at least {amount} ALEPH")


class DomainUsed(AlephSDKError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Domain "{name}" is already in use')


class SSHKeysUsed(AlephSDKError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f'SSH key "{key}" is already in use')


class StreamNotSupported(AlephSDKError):
    def __init__(self):
        super().__init__("Stream payment not supported on this chain")


class ReceiverRequired(AlephSDKError):
    def __init__(self):
        super().__init__("Receiver address is required")


class ReceiverRewardRequired(AlephSDKError):
    def __init__(self):
        super().__init__("Receiver reward address is required")


class MissingVolumeData(AlephSDKError):
    def __init__(self):
        super().__init__("Missing volume data")


class CustomRuntimeNeeded(AlephSDKError):
    def __init__(self):
        super().__init__("Custom runtime is required")


class InvalidCodeFile(AlephSDKError):
    def __init__(self):
        super().__init__("Invalid code file")


class InvalidCodeType(AlephSDKError):
    def __init__(self):
        super().__init__("Invalid code type")


class MaxPortsExceeded(AlephSDKError):
    def __init__(self, limit: int, total: int):
        self.limit = limit
        self.total = total
        super().__init__(f"Maximum {limit} ports allowed. Current total would be {total}")


def wrap_error(err: BaseException) -> AlephSDKError:
    """Return SDK errors unchanged, wrap anything else in RequestFailed."""
    if isinstance(err, AlephSDKError):
        return err
    return RequestFailed(err)
