"""
Typed exception hierarchy for the accrual kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the data that caused it.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AccrualKernelError (base)
    |
    +-- ValidationError                 surfaced verbatim, never retried
    |   +-- NegativeTrueUpError
    |   +-- NegativeFinalProvisionError
    |   +-- ImmutableTrueUpError
    |   +-- InvalidTrueUpFieldError
    |   +-- ReturnCommentRequiredError
    |   +-- ApproverRequiredError
    |   +-- EmptySelectionError
    |   +-- MissingContractDatesError
    |   +-- InvalidCategoryError
    |   +-- NegativeProvisionAmountError
    |   +-- InvalidAmountError
    |   +-- InvalidProvisionPercentError
    |   +-- NonPoSubmissionMissingError
    |   +-- InvalidRuleError
    |
    +-- NotFoundError                   client error
    |   +-- PoLineNotFoundError
    |   +-- SubmissionNotFoundError
    |   +-- AssignmentNotFoundError
    |   +-- NonPoFormNotFoundError
    |   +-- NonPoAssignmentNotFoundError
    |   +-- NonPoSubmissionNotFoundError
    |   +-- RuleNotFoundError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |
    +-- MalformedInputError             recovered locally, carried in Parsed
    |   +-- MalformedDateError
    |   +-- MalformedProcessingMonthError
    |
    +-- PersistenceWarning              logged and swallowed
        +-- ProvisionCachePersistenceError

===============================================================================
ERROR CODES
===============================================================================

Category    | Code                          | When raised
------------|-------------------------------|-----------------------------------
Validation  | NEGATIVE_TRUE_UP              | True-up amount below zero
            | NEGATIVE_FINAL_PROVISION      | Edit would make final provision < 0
            | TRUE_UP_IMMUTABLE             | Edit of the previous-month true-up
            | INVALID_TRUE_UP_FIELD         | Unknown editable field
            | RETURN_COMMENT_REQUIRED       | Return without a comment
            | APPROVER_REQUIRED             | Submission without approvers
            | EMPTY_SELECTION               | Batch operation with no ids
            | MISSING_CONTRACT_DATES        | Period category without dates
            | INVALID_CATEGORY              | Category not Period/Activity
            | NEGATIVE_PROVISION_AMOUNT     | Non-PO amount below zero
            | INVALID_AMOUNT                | Amount not a finite number
            | INVALID_PROVISION_PERCENT     | Percent outside 0..100
            | NON_PO_SUBMISSION_MISSING     | Approval without a form submission
            | INVALID_RULE                  | Malformed rule condition/action
------------|-------------------------------|-----------------------------------
NotFound    | PO_LINE_NOT_FOUND             | Unknown PO line id
            | SUBMISSION_NOT_FOUND          | Unknown approval submission id
            | ASSIGNMENT_NOT_FOUND          | Unknown activity assignment id
            | NON_PO_FORM_NOT_FOUND         | Unknown non-PO form id
            | NON_PO_ASSIGNMENT_NOT_FOUND   | Unknown non-PO assignment id
            | NON_PO_SUBMISSION_NOT_FOUND   | Unknown non-PO submission id
            | RULE_NOT_FOUND                | Unknown approval rule id
------------|-------------------------------|-----------------------------------
Workflow    | INVALID_TRANSITION            | Status change not allowed
------------|-------------------------------|-----------------------------------
Malformed   | MALFORMED_DATE                | Date string not parseable
            | MALFORMED_PROCESSING_MONTH    | Label is not "Mon YYYY"
------------|-------------------------------|-----------------------------------
Persistence | PROVISION_CACHE_WRITE_FAILED  | Background cache upsert failed
"""

from __future__ import annotations

from decimal import Decimal


class AccrualKernelError(Exception):
    """Base exception for all accrual kernel errors."""

    code: str = "ACCRUAL_KERNEL_ERROR"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(AccrualKernelError):
    """Base exception for rejected user input."""

    code: str = "VALIDATION_ERROR"


class NegativeTrueUpError(ValidationError):
    code: str = "NEGATIVE_TRUE_UP"

    def __init__(self, po_line_id: str, amount: Decimal):
        self.po_line_id = po_line_id
        self.amount = amount
        super().__init__("True-up cannot be negative")


class NegativeFinalProvisionError(ValidationError):
    """The edit would push the line's final provision below zero."""

    code: str = "NEGATIVE_FINAL_PROVISION"

    def __init__(self, po_line_id: str, final_provision: Decimal):
        self.po_line_id = po_line_id
        self.final_provision = final_provision
        super().__init__(
            f"Final provision cannot be negative (would be {final_provision})"
        )


class ImmutableTrueUpError(ValidationError):
    code: str = "TRUE_UP_IMMUTABLE"

    def __init__(self, po_line_id: str, processing_month: str):
        self.po_line_id = po_line_id
        self.processing_month = processing_month
        super().__init__(
            "Previous month true-up cannot be modified in the current "
            "processing month"
        )


class InvalidTrueUpFieldError(ValidationError):
    code: str = "INVALID_TRUE_UP_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Invalid field: {field}")


class ReturnCommentRequiredError(ValidationError):
    code: str = "RETURN_COMMENT_REQUIRED"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__("A comment is required when returning a task")


class ApproverRequiredError(ValidationError):
    code: str = "APPROVER_REQUIRED"

    def __init__(self) -> None:
        super().__init__("At least one approver must be selected")


class EmptySelectionError(ValidationError):
    code: str = "EMPTY_SELECTION"

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"No {what} selected")


class MissingContractDatesError(ValidationError):
    """Period category needs both a parseable start and end date."""

    code: str = "MISSING_CONTRACT_DATES"

    def __init__(self, po_line_id: str):
        self.po_line_id = po_line_id
        super().__init__(
            "Start date and end date are required for Period-based category"
        )


class InvalidCategoryError(ValidationError):
    code: str = "INVALID_CATEGORY"

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"Invalid category: {category}")


class NegativeProvisionAmountError(ValidationError):
    code: str = "NEGATIVE_PROVISION_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__("Provision amount cannot be negative")


class InvalidAmountError(ValidationError):
    """An amount that does not parse, or parses to NaN or Infinity."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Not a finite number: {value!r}")


class InvalidProvisionPercentError(ValidationError):
    code: str = "INVALID_PROVISION_PERCENT"

    def __init__(self, percent: Decimal):
        self.percent = percent
        super().__init__(f"Provision percent must be between 0 and 100: {percent}")


class NonPoSubmissionMissingError(ValidationError):
    code: str = "NON_PO_SUBMISSION_MISSING"

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(
            f"Non-PO assignment {assignment_id} has no submission to approve"
        )


class InvalidRuleError(ValidationError):
    code: str = "INVALID_RULE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid rule: {reason}")


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(AccrualKernelError):
    """Base exception for unknown entity ids."""

    code: str = "NOT_FOUND"
    entity: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class PoLineNotFoundError(NotFoundError):
    code: str = "PO_LINE_NOT_FOUND"
    entity: str = "PO line"


class SubmissionNotFoundError(NotFoundError):
    code: str = "SUBMISSION_NOT_FOUND"
    entity: str = "Submission"


class AssignmentNotFoundError(NotFoundError):
    code: str = "ASSIGNMENT_NOT_FOUND"
    entity: str = "Assignment"


class NonPoFormNotFoundError(NotFoundError):
    code: str = "NON_PO_FORM_NOT_FOUND"
    entity: str = "Non-PO form"


class NonPoAssignmentNotFoundError(NotFoundError):
    code: str = "NON_PO_ASSIGNMENT_NOT_FOUND"
    entity: str = "Non-PO assignment"


class NonPoSubmissionNotFoundError(NotFoundError):
    code: str = "NON_PO_SUBMISSION_NOT_FOUND"
    entity: str = "Non-PO submission"


class RuleNotFoundError(NotFoundError):
    code: str = "RULE_NOT_FOUND"
    entity: str = "Rule"


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class WorkflowError(AccrualKernelError):
    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Requested status change is not in the entity's transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, action: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} from status {from_status}"
        )


# ---------------------------------------------------------------------------
# Malformed input (recovered locally)
# ---------------------------------------------------------------------------


class MalformedInputError(AccrualKernelError):
    code: str = "MALFORMED_INPUT"

    def __init__(self, raw: object, message: str):
        self.raw = raw
        super().__init__(message)


class MalformedDateError(MalformedInputError):
    code: str = "MALFORMED_DATE"

    def __init__(self, raw: object):
        super().__init__(raw, f"Unparseable date: {raw!r}")


class MalformedProcessingMonthError(MalformedInputError):
    code: str = "MALFORMED_PROCESSING_MONTH"

    def __init__(self, raw: object):
        super().__init__(raw, f"Processing month must look like 'Feb 2026': {raw!r}")


# ---------------------------------------------------------------------------
# Persistence warnings (logged, never surfaced)
# ---------------------------------------------------------------------------


class PersistenceWarning(AccrualKernelError):
    code: str = "PERSISTENCE_WARNING"


class ProvisionCachePersistenceError(PersistenceWarning):
    code: str = "PROVISION_CACHE_WRITE_FAILED"

    def __init__(self, processing_month: str, cause: BaseException):
        self.processing_month = processing_month
        self.cause = repr(cause)
        super().__init__(
            f"Activity provision cache write failed for {processing_month}: {cause}"
        )
