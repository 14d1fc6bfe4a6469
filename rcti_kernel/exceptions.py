"""
Typed exception hierarchy for the RCTI kernel.

Every error carries a machine-readable ``code`` class attribute and its
context as structured attributes, so callers catch by type and API layers
report by code rather than by parsing messages.

    RctiError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidGstRegimeError
    |   +-- InvalidLineInputError
    |   +-- InvalidDeductionError
    |   +-- InvalidOverrideError
    |   +-- IneligiblePayeeError
    |
    +-- RctiStateError
    |   +-- RctiNotFoundError
    |   +-- RctiNotDraftError
    |   +-- RctiNotFinalisedError
    |   +-- EmptyRctiError
    |   +-- NoEligibleJobsError
    |   +-- DuplicateInvoiceNumberError
    |
    +-- DeductionError
        +-- DeductionNotFoundError
        +-- DeductionAlreadyAppliedError
        +-- DeductionCompletedError

Category   | Code                        | When Raised
-----------|-----------------------------|-----------------------------------------
Validation | INVALID_AMOUNT              | Non-numeric or non-finite money/hours
           | INVALID_GST_REGIME          | Unknown GST status or mode
           | INVALID_LINE_INPUT          | Negative rate, bad surcharge input
           | INVALID_DEDUCTION           | Bad type/frequency/amounts on a deduction
           | INVALID_OVERRIDE            | Negative per-invoice amount override
           | INELIGIBLE_PAYEE            | RCTI or deduction for an employee
-----------|-----------------------------|-----------------------------------------
State      | RCTI_NOT_FOUND              | Invoice ID doesn't exist
           | RCTI_NOT_DRAFT              | Line/GST edit or finalise outside draft
           | RCTI_NOT_FINALISED          | Unfinalise or pay outside finalised
           | EMPTY_RCTI                  | Finalising an invoice with no lines
           | NO_ELIGIBLE_JOBS            | Draft requested with no unbilled jobs
           | DUPLICATE_INVOICE_NUMBER    | Unique constraint backstop tripped
-----------|-----------------------------|-----------------------------------------
Deduction  | DEDUCTION_NOT_FOUND         | Deduction ID doesn't exist
           | DEDUCTION_ALREADY_APPLIED   | Edit/delete after charges were recorded
           | DEDUCTION_COMPLETED         | Operation on a completed deduction
"""


class RctiError(Exception):
    """
    Base exception for all RCTI kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "RCTI_ERROR"


# Validation errors


class ValidationError(RctiError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Value cannot be interpreted as a finite decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: str, field: str | None = None):
        self.value = value
        self.field = field
        label = f" for {field}" if field else ""
        super().__init__(f"Invalid amount{label}: {value!r}")


class InvalidGstRegimeError(ValidationError):
    """GST status or mode is not one of the supported values."""

    code: str = "INVALID_GST_REGIME"

    def __init__(self, field: str, value: str, allowed: tuple[str, ...]):
        self.field = field
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid {field} {value!r}: must be one of {', '.join(allowed)}"
        )


class InvalidLineInputError(ValidationError):
    """Line input rejected before calculation."""

    code: str = "INVALID_LINE_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidDeductionError(ValidationError):
    """Recurring deduction definition rejected."""

    code: str = "INVALID_DEDUCTION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid deduction {field}: {reason}")


class InvalidOverrideError(ValidationError):
    """Per-invoice amount override rejected."""

    code: str = "INVALID_OVERRIDE"

    def __init__(self, deduction_id: str, amount: str):
        self.deduction_id = deduction_id
        self.amount = amount
        super().__init__(
            f"Invalid amount override {amount} for deduction {deduction_id}: "
            f"must not be negative"
        )


class IneligiblePayeeError(ValidationError):
    """Payee type cannot receive RCTIs or recurring deductions."""

    code: str = "INELIGIBLE_PAYEE"

    def __init__(self, driver_id: str, payee_type: str):
        self.driver_id = driver_id
        self.payee_type = payee_type
        super().__init__(
            f"Driver {driver_id} is an {payee_type}; RCTIs and deductions "
            f"only apply to contractors and subcontractors"
        )


# Invoice state errors


class RctiStateError(RctiError):
    """Base exception for invoice lifecycle violations."""

    code: str = "RCTI_STATE_ERROR"


class RctiNotFoundError(RctiStateError):
    """Invoice with given ID was not found."""

    code: str = "RCTI_NOT_FOUND"

    def __init__(self, rcti_id: str):
        self.rcti_id = rcti_id
        super().__init__(f"RCTI not found: {rcti_id}")


class RctiNotDraftError(RctiStateError):
    """Operation requires a draft invoice."""

    code: str = "RCTI_NOT_DRAFT"

    def __init__(self, rcti_id: str, status: str, operation: str):
        self.rcti_id = rcti_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} RCTI {rcti_id} in status '{status}': "
            f"only draft RCTIs can be changed"
        )


class RctiNotFinalisedError(RctiStateError):
    """Operation requires a finalised invoice."""

    code: str = "RCTI_NOT_FINALISED"

    def __init__(self, rcti_id: str, status: str, operation: str):
        self.rcti_id = rcti_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} RCTI {rcti_id} in status '{status}': "
            f"RCTI must be finalised"
        )


class EmptyRctiError(RctiStateError):
    """Invoice has no lines."""

    code: str = "EMPTY_RCTI"

    def __init__(self, rcti_id: str):
        self.rcti_id = rcti_id
        super().__init__(f"Cannot finalise RCTI {rcti_id} with no lines")


class NoEligibleJobsError(RctiStateError):
    """No unbilled jobs exist for the driver and week."""

    code: str = "NO_ELIGIBLE_JOBS"

    def __init__(self, driver_id: str, week_ending: str):
        self.driver_id = driver_id
        self.week_ending = week_ending
        super().__init__(
            f"No eligible jobs found for driver {driver_id} "
            f"and week ending {week_ending}"
        )


class DuplicateInvoiceNumberError(RctiStateError):
    """Invoice number collided at insert time."""

    code: str = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice number already in use: {invoice_number}")


# Deduction errors


class DeductionError(RctiError):
    """Base exception for recurring deduction errors."""

    code: str = "DEDUCTION_ERROR"


class DeductionNotFoundError(DeductionError):
    """Deduction with given ID was not found."""

    code: str = "DEDUCTION_NOT_FOUND"

    def __init__(self, deduction_id: str):
        self.deduction_id = deduction_id
        super().__init__(f"Deduction not found: {deduction_id}")


class DeductionAlreadyAppliedError(DeductionError):
    """Deduction has recorded charges and can no longer be edited or deleted."""

    code: str = "DEDUCTION_ALREADY_APPLIED"

    def __init__(self, deduction_id: str, operation: str, amount_paid: str):
        self.deduction_id = deduction_id
        self.operation = operation
        self.amount_paid = amount_paid
        super().__init__(
            f"Cannot {operation} deduction {deduction_id}: "
            f"it has already been applied to RCTIs (amount paid {amount_paid})"
        )


class DeductionCompletedError(DeductionError):
    """Deduction balance is exhausted."""

    code: str = "DEDUCTION_COMPLETED"

    def __init__(self, deduction_id: str):
        self.deduction_id = deduction_id
        super().__init__(f"Deduction {deduction_id} is already completed")
