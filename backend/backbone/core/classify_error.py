"""Error Classification — ordered, data-driven rule table mapping raw failures to CategorizedError.

Invariants:
    - Rules evaluated in order: code rules, then exception-type rules, then message rules
    - First matching rule wins; no match defaults to DATABASE, a missing error to UNKNOWN
    - Retryability is decided here, once per failure; callers never re-derive it
    - Pure function: no IO, no logging, no async

Design Decisions:
    - Rule tuples over if/elif chains: the table is inspectable and unit-testable alone
      (ADR: classification separated from the retry loop)
    - Structured code first, message heuristics last: SQLSTATE is authoritative when present
    - Exact retryable codes listed before their class prefix so the prefix rule only
      catches the non-retryable remainder of the class
"""

from dataclasses import dataclass
from typing import Any

from backbone.core.errors import CategorizedError, ErrorCategory, ErrorSeverity


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table."""
    category: ErrorCategory
    retryable: bool = False
    codes: tuple[str, ...] = ()
    code_prefixes: tuple[str, ...] = ()
    exception_types: tuple[type[BaseException], ...] = ()
    message_patterns: tuple[str, ...] = ()

    def matches(self, error: BaseException, code: str | None, message: str) -> bool:
        if code is not None:
            if code in self.codes:
                return True
            if any(code.startswith(p) for p in self.code_prefixes):
                return True
        if self.exception_types and isinstance(error, self.exception_types):
            return True
        return any(p in message for p in self.message_patterns)


@dataclass(frozen=True)
class CategoryDefaults:
    """Severity, recoverability and user-facing copy per category."""
    message: str
    user_message: str
    severity: ErrorSeverity
    recoverable: bool


CATEGORY_DEFAULTS: dict[ErrorCategory, CategoryDefaults] = {
    ErrorCategory.NETWORK: CategoryDefaults(
        "Network error occurred",
        "Connection problem. Please check your internet connection and try again.",
        ErrorSeverity.HIGH, True,
    ),
    ErrorCategory.AUTHENTICATION: CategoryDefaults(
        "Authentication error occurred",
        "Your session has expired. Please sign in again.",
        ErrorSeverity.HIGH, True,
    ),
    ErrorCategory.AUTHORIZATION: CategoryDefaults(
        "Authorization error occurred",
        "You do not have permission to access this content.",
        ErrorSeverity.MEDIUM, False,
    ),
    ErrorCategory.VALIDATION: CategoryDefaults(
        "Data validation failed",
        "The submitted data is invalid. Please check it and try again.",
        ErrorSeverity.MEDIUM, False,
    ),
    ErrorCategory.DATABASE: CategoryDefaults(
        "Database error occurred",
        "A database error occurred. Please try again.",
        ErrorSeverity.HIGH, True,
    ),
    ErrorCategory.UNKNOWN: CategoryDefaults(
        "Unknown error occurred",
        "An unexpected error occurred. Please try again.",
        ErrorSeverity.MEDIUM, True,
    ),
}


# SQLSTATE classes: 08 connection exception, 23 integrity constraint violation,
# 28 invalid authorization, 40 transaction rollback, 53 insufficient resources,
# 57 operator intervention. PGRST* are PostgREST gateway codes.
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        ErrorCategory.AUTHENTICATION, codes=("PGRST301", "28000", "28P01"),
    ),
    ClassificationRule(
        ErrorCategory.AUTHORIZATION, codes=("42501", "PGRST116"),
    ),
    ClassificationRule(
        ErrorCategory.VALIDATION, code_prefixes=("23",),
    ),
    ClassificationRule(
        ErrorCategory.NETWORK, retryable=True,
        codes=(
            "08000", "08001", "08003", "08004", "08006",
            "40001", "40P01", "53300", "57P03",
        ),
    ),
    ClassificationRule(
        ErrorCategory.NETWORK, code_prefixes=("08", "57"),
    ),
    ClassificationRule(
        ErrorCategory.NETWORK, retryable=True,
        exception_types=(TimeoutError, ConnectionError),
    ),
    ClassificationRule(
        ErrorCategory.AUTHENTICATION,
        message_patterns=("jwt", "token", "unauthorized"),
    ),
    ClassificationRule(
        ErrorCategory.AUTHORIZATION,
        message_patterns=("permission", "forbidden"),
    ),
    ClassificationRule(
        ErrorCategory.NETWORK, retryable=True,
        message_patterns=("network", "fetch", "connection", "timeout", "timed out"),
    ),
)

# SQLSTATE attributes win over a generic .code anywhere in the chain
_CODE_ATTRIBUTES = ("sqlstate", "pgcode", "code")


def _error_chain(error: BaseException) -> list[Any]:
    chain: list[Any] = []
    current: Any = error
    while current is not None and all(current is not c for c in chain):
        chain.append(current)
        # SQLAlchemy DBAPIError keeps the driver error on .orig
        current = getattr(current, "orig", None) or getattr(current, "__cause__", None)
    return chain


def extract_error_code(error: BaseException) -> str | None:
    """Find a machine-readable code on the error or the driver error it wraps."""
    chain = _error_chain(error)
    for attr in _CODE_ATTRIBUTES:
        for item in chain:
            value = getattr(item, attr, None)
            if isinstance(value, str) and value:
                return value
    return None


def find_rule(
    error: BaseException,
    rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> ClassificationRule | None:
    """Return the first rule matching the error, or None."""
    code = extract_error_code(error)
    message = str(error).lower()
    for rule in rules:
        if rule.matches(error, code, message):
            return rule
    return None


def build_error(
    category: ErrorCategory,
    *,
    original_error: BaseException | None = None,
    retryable: bool = False,
    code: str | None = None,
    context: dict[str, Any] | None = None,
) -> CategorizedError:
    """Create a CategorizedError using the category's defaults."""
    defaults = CATEGORY_DEFAULTS[category]
    return CategorizedError(
        category=category,
        message=str(original_error) if original_error else defaults.message,
        user_message=defaults.user_message,
        severity=defaults.severity,
        recoverable=defaults.recoverable,
        retryable=retryable,
        code=code,
        original_error=original_error,
        context=dict(context or {}),
    )


def classify_error(
    error: BaseException | None,
    context: dict[str, Any] | None = None,
    rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> CategorizedError:
    """Classify a raw failure into exactly one category."""
    if error is None:
        return build_error(ErrorCategory.UNKNOWN, context=context)
    rule = find_rule(error, rules)
    category = rule.category if rule else ErrorCategory.DATABASE
    return build_error(
        category,
        original_error=error,
        retryable=rule.retryable if rule else False,
        code=extract_error_code(error),
        context=context,
    )


def network_unavailable_error(context: dict[str, Any] | None = None) -> CategorizedError:
    """Error returned when a call is refused because the service is unreachable."""
    return build_error(ErrorCategory.NETWORK, retryable=True, context=context)
