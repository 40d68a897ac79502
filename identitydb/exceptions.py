"""IdentityDB exceptions.

This module defines the exception hierarchy for the IdentityDB library.
All custom exceptions inherit from IdentityDBError, allowing users to catch
all library-specific errors with a single except clause.

Exception categories:
- IdentityDBError: Base exception for all IdentityDB errors
- OperationError: A store call failed
    - NotFoundError: Point read or conditional update of a missing record
    - AlreadyExistsError: Not-exists precondition failed on creation
    - ConditionCheckFailedError: Any other failed condition expression
    - TransactionAbortedError: An atomic multi-item write was cancelled
    - StoreUnavailableError: Transport failures from the underlying store
        - ThroughputExceededError: Throttling and capacity errors
    - TableNotFoundError: The configured table does not exist
    - DynamoDBClientError: Any other DynamoDB client error
- ValidationError: Local validation failed before or after a store call
    - DecodeError: A record of a recognized kind has the wrong shape
    - InvalidKeySchemaError: Table key schema is invalid
    - InsufficientConditionsError: Logical condition needs more operands
    - UnknownConditionTypeError: Unsupported condition type
    - EmptyUpdateError: Update operation has no fields

Records of an unknown kind are not errors: the projection skips them.
"""

from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError

if TYPE_CHECKING:
    from botocore.exceptions import ClientError

    from identitydb.keys import DynamoDBKey


class IdentityDBError(Exception):
    """Base exception for all IdentityDB errors.

    Example:
        try:
            store.get_details("homer@example.com")
        except IdentityDBError as e:
            pass

    """


class OperationError(IdentityDBError):
    """Base class for failures of a store operation.

    Attributes:
        operation: Name of the store operation that failed.
        key: The DynamoDB key involved, if any.
        original_error: The underlying botocore exception, if any.

    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        key: "DynamoDBKey | None" = None,
        original_error: Exception | None = None,
    ) -> None:
        self.operation = operation
        self.key = key
        self.original_error = original_error
        super().__init__(_with_context(message, operation=operation, key=key))


class NotFoundError(OperationError):
    """Raised when a record does not exist.

    Example:
        user_store.get("nobody@example.com")
        Raises NotFoundError.

    """

    def __init__(
        self,
        *,
        operation: str | None = None,
        key: "DynamoDBKey | None" = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            "Record not found",
            operation=operation,
            key=key,
            original_error=original_error,
        )


class AlreadyExistsError(OperationError):
    """Raised when a record guarded by a not-exists precondition already exists.

    This occurs when a generated organisation or service identifier collides
    with an existing record.
    """

    def __init__(
        self,
        *,
        operation: str | None = None,
        key: "DynamoDBKey | None" = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            "Record already exists",
            operation=operation,
            key=key,
            original_error=original_error,
        )


class ConditionCheckFailedError(OperationError):
    """Raised when a condition expression is not satisfied."""

    def __init__(
        self,
        *,
        operation: str | None = None,
        key: "DynamoDBKey | None" = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            "Condition check failed",
            operation=operation,
            key=key,
            original_error=original_error,
        )


class TransactionAbortedError(OperationError):
    """Raised when an atomic multi-item write is cancelled.

    No constituent write of the transaction was applied.

    Attributes:
        reasons: Cancellation reason codes, one per transaction item, in the
            order the items were submitted. "None" marks items that did not
            cause the cancellation.

    """

    def __init__(
        self,
        *,
        reasons: list[str] | None = None,
        operation: str | None = None,
        key: "DynamoDBKey | None" = None,
        original_error: Exception | None = None,
    ) -> None:
        self.reasons = reasons or []
        message = "Transaction cancelled"
        if self.reasons:
            message = f"{message} [{', '.join(self.reasons)}]"
        super().__init__(
            message,
            operation=operation,
            key=key,
            original_error=original_error,
        )


class StoreUnavailableError(OperationError):
    """Raised when the store cannot be reached or refuses the request."""


class ThroughputExceededError(StoreUnavailableError):
    """Raised when DynamoDB throttles the request."""

    def __init__(
        self,
        *,
        operation: str | None = None,
        key: "DynamoDBKey | None" = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(
            "Provisioned throughput exceeded",
            operation=operation,
            key=key,
            original_error=original_error,
        )


class TableNotFoundError(OperationError):
    """Raised when the table does not exist."""

    def __init__(
        self,
        *,
        table_name: str | None = None,
        operation: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.table_name = table_name
        message = f"Table '{table_name}' not found" if table_name else "Table not found"
        super().__init__(message, operation=operation, original_error=original_error)


class DynamoDBClientError(OperationError):
    """Raised for DynamoDB client errors without a more specific class.

    Attributes:
        error_code: The DynamoDB error code.

    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        operation: str | None = None,
        key: "DynamoDBKey | None" = None,
        original_error: Exception | None = None,
    ) -> None:
        self.error_code = error_code
        if error_code:
            message = f"{error_code}: {message}"
        super().__init__(message, operation=operation, key=key, original_error=original_error)


class ValidationError(IdentityDBError):
    """Base class for local validation failures."""


class DecodeError(ValidationError, ValueError):
    """Raised when a record of a recognized kind cannot be decoded.

    It is also a ValueError so that Pydantic validators may raise it.

    Attributes:
        record_kind: The record kind being decoded, if known.

    """

    def __init__(self, message: str, *, record_kind: str | None = None) -> None:
        self.record_kind = record_kind
        if record_kind:
            message = f"{record_kind}: {message}"
        super().__init__(message)


class InvalidKeySchemaError(ValidationError):
    """Raised when a DynamoDB key schema is invalid.

    The table must be keyed by a string partition key `id` and a string sort
    key `rng`.
    """

    def __init__(self, message: str = "Invalid key schema: no partition key found") -> None:
        super().__init__(message)


class InsufficientConditionsError(ValidationError):
    """Raised when a logical condition has insufficient operands.

    Attributes:
        operator: The logical operator that failed.
        count: The number of conditions provided.

    """

    def __init__(
        self,
        *,
        operator: str,
        count: int,
    ) -> None:
        self.operator = operator
        self.count = count
        super().__init__(f"{operator} requires at least 2 conditions, got {count}")


class UnknownConditionTypeError(ValidationError):
    """Raised when building a condition expression with an unsupported class.

    Attributes:
        condition_type: The type of the unknown condition.

    """

    def __init__(self, condition_type: type) -> None:
        self.condition_type = condition_type
        super().__init__(f"Unknown condition type: {condition_type}")


class EmptyUpdateError(ValidationError):
    """Raised when an update operation has nothing to update.

    Example:
        organisation_store.remove_user_from_organisation_groups(org_id, user_id)

    """

    def __init__(self) -> None:
        super().__init__("No updates provided")


_THROTTLING_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
    }
)
_UNAVAILABLE_CODES = frozenset(
    {
        "InternalServerError",
        "ServiceUnavailable",
    }
)


def wrap_client_error(
    error: "ClientError",
    *,
    operation: str | None = None,
    key: "DynamoDBKey | None" = None,
    table_name: str | None = None,
) -> OperationError:
    """Translate a botocore ClientError into an IdentityDB exception.

    Args:
        error: The ClientError raised by boto3 or aioboto3.
        operation: Name of the store operation.
        key: The key involved, if any.
        table_name: The table name, used for TableNotFoundError.

    Returns:
        The matching OperationError, with the original error attached.

    """
    response: dict[str, Any] = getattr(error, "response", {}) or {}
    error_info = response.get("Error", {})
    code = error_info.get("Code", "")
    message = error_info.get("Message", str(error))

    if code == "ConditionalCheckFailedException":
        return ConditionCheckFailedError(operation=operation, key=key, original_error=error)
    if code == "TransactionCanceledException":
        reasons = [reason.get("Code", "None") for reason in response.get("CancellationReasons", [])]
        if not reasons:
            reasons = _reasons_from_message(message)
        return TransactionAbortedError(
            reasons=reasons, operation=operation, key=key, original_error=error
        )
    if code == "ResourceNotFoundException":
        return TableNotFoundError(table_name=table_name, operation=operation, original_error=error)
    if code in _THROTTLING_CODES:
        return ThroughputExceededError(operation=operation, key=key, original_error=error)
    if code in _UNAVAILABLE_CODES:
        return StoreUnavailableError(
            message, operation=operation, key=key, original_error=error
        )
    return DynamoDBClientError(
        message, error_code=code or None, operation=operation, key=key, original_error=error
    )


def wrap_transport_error(
    error: BotoCoreError,
    *,
    operation: str | None = None,
    key: "DynamoDBKey | None" = None,
) -> StoreUnavailableError:
    """Translate a botocore transport error into a StoreUnavailableError."""
    return StoreUnavailableError(str(error), operation=operation, key=key, original_error=error)


def _reasons_from_message(message: str) -> list[str]:
    # "Transaction cancelled, please refer cancellation reasons for specific
    # reasons [ConditionalCheckFailed, None]"
    start, end = message.rfind("["), message.rfind("]")
    if start == -1 or end < start:
        return []
    return [reason.strip() for reason in message[start + 1 : end].split(",") if reason.strip()]


def _with_context(message: str, *, operation: str | None, key: "DynamoDBKey | None") -> str:
    if operation:
        message = f"{operation}: {message}"
    if key:
        rendered = ", ".join(f"{name}={value!r}" for name, value in key.items())
        message = f"{message} ({rendered})"
    return message


__all__ = [
    "AlreadyExistsError",
    "ConditionCheckFailedError",
    "DecodeError",
    "DynamoDBClientError",
    "EmptyUpdateError",
    "IdentityDBError",
    "InsufficientConditionsError",
    "InvalidKeySchemaError",
    "NotFoundError",
    "OperationError",
    "StoreUnavailableError",
    "TableNotFoundError",
    "ThroughputExceededError",
    "TransactionAbortedError",
    "UnknownConditionTypeError",
    "ValidationError",
    "wrap_client_error",
    "wrap_transport_error",
]
