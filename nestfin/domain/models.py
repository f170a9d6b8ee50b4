"""Domain models for the Nest Finance data core.

All records are immutable (frozen dataclasses). Documents arriving from the
schemaless document store are validated and defaulted here, at the
subscription boundary, before they ever reach the collection store.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

DEFAULT_EXPENSE_CATEGORY = "General"
DEFAULT_INCOME_CATEGORY = "Income"
FREE_PLAN = "free"

# Type labels that mark an account as a liability
LIABILITY_LABELS = ("liability", "debt")


class DocumentValidationError(ValueError):
    """Raised when a document cannot be turned into a domain record."""

    def __init__(self, message: str, doc_id: Optional[str] = None):
        super().__init__(message)
        self.doc_id = doc_id


class TransactionType(Enum):
    """Type of financial transaction."""

    INCOME = "income"
    EXPENSE = "expense"


class AccountType(Enum):
    """Whether an account adds to or subtracts from net worth."""

    ASSET = "asset"
    LIABILITY = "liability"


class GoalType(Enum):
    """Savings goals grow toward a target; debt goals pay one down."""

    SAVINGS = "savings"
    DEBT = "debt"


def to_decimal(value: Any, field_name: str = "amount", default: Optional[Decimal] = None) -> Decimal:
    """Coerce a document number into a Decimal.

    Floats go through ``str`` so that 0.1 stays 0.1 instead of its binary
    expansion.

    Args:
        value: int, float, str or Decimal (None uses ``default``)
        field_name: Field name used in error messages
        default: Value returned for None. If also None, None is an error.

    Returns:
        Decimal value

    Raises:
        DocumentValidationError: If the value is not numeric
    """
    if value is None or value == "":
        if default is None:
            raise DocumentValidationError(f"{field_name} is required")
        return default
    if isinstance(value, bool):
        raise DocumentValidationError(f"{field_name} must be a number, got bool")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise DocumentValidationError(f"{field_name} must be a number, got {value!r}")
    if not result.is_finite():
        raise DocumentValidationError(f"{field_name} must be finite")
    return result


def round_half_up(value: Decimal, places: int = 0) -> Decimal:
    """Round for display: 2.5 -> 3, 2.345 -> 2.35 (places=2)."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a document timestamp into a naive local datetime.

    Accepts datetime, date, ISO strings and epoch seconds. Aware datetimes
    are converted to local time so they compare with naive ones.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value)
    if isinstance(value, str):
        try:
            return to_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            raise DocumentValidationError(f"Invalid timestamp: {value!r}")
    raise DocumentValidationError(f"Unsupported timestamp type: {type(value).__name__}")


def _to_date(value: Any) -> Optional[date]:
    moment = to_datetime(value)
    return moment.date() if moment else None


def _require_id(doc_id: Any) -> str:
    if not isinstance(doc_id, str) or not doc_id.strip():
        raise DocumentValidationError("Document id is required")
    return doc_id


@dataclass(frozen=True, slots=True)
class Transaction:
    """Immutable transaction record.

    ``date`` is None only for a freshly added transaction whose server
    timestamp has not been resolved yet.
    """

    id: str
    type: TransactionType
    description: str
    amount: Decimal
    category: str
    account_id: Optional[str] = None
    date: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate transaction data."""
        if self.amount < 0:
            raise DocumentValidationError("Amount cannot be negative", self.id)

    @property
    def is_income(self) -> bool:
        return self.type == TransactionType.INCOME

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE

    def with_updates(self, **changes: Any) -> "Transaction":
        """Create new instance with updated fields."""
        return replace(self, **changes)

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Transaction":
        """Build a transaction from a stored document.

        Args:
            doc_id: Document identifier
            data: Raw document fields

        Returns:
            Validated Transaction

        Raises:
            DocumentValidationError: If the document is malformed

        Example:
            >>> Transaction.from_document("t1", {"type": "expense", "amount": 40})
            Transaction(id='t1', type=<TransactionType.EXPENSE: 'expense'>, ...)
        """
        doc_id = _require_id(doc_id)
        try:
            tx_type = TransactionType(str(data.get("type", "")).lower())
        except ValueError:
            raise DocumentValidationError(
                f"Unknown transaction type: {data.get('type')!r}", doc_id
            )

        default_category = (
            DEFAULT_INCOME_CATEGORY
            if tx_type == TransactionType.INCOME
            else DEFAULT_EXPENSE_CATEGORY
        )
        try:
            return cls(
                id=doc_id,
                type=tx_type,
                description=str(data.get("description") or ""),
                amount=to_decimal(data.get("amount"), "amount", Decimal("0")),
                category=str(data.get("category") or default_category),
                account_id=data.get("accountId") or None,
                date=to_datetime(data.get("date")),
            )
        except DocumentValidationError as e:
            e.doc_id = doc_id
            raise

    def to_document(self) -> dict:
        """Serialize to the stored document shape (without id)."""
        doc = {
            "type": self.type.value,
            "description": self.description,
            "amount": str(self.amount),
            "category": self.category,
        }
        if self.account_id:
            doc["accountId"] = self.account_id
        if self.date:
            doc["date"] = self.date.isoformat()
        return doc


@dataclass(frozen=True, slots=True)
class Goal:
    """Savings or debt-payoff goal.

    ``current_amount`` may be negative for debt goals.
    """

    id: str
    name: str
    target_amount: Decimal
    current_amount: Decimal = Decimal("0")
    type: GoalType = GoalType.SAVINGS
    due_date: Optional[date] = None

    def __post_init__(self) -> None:
        if self.target_amount < 0:
            raise DocumentValidationError("Target amount cannot be negative", self.id)

    @property
    def is_debt(self) -> bool:
        return self.type == GoalType.DEBT

    @property
    def remaining(self) -> Decimal:
        """Amount still needed to reach the target (never negative)."""
        return max(self.target_amount - self.current_amount, Decimal("0"))

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Goal":
        """Build a goal from a stored document.

        The legacy ``isDebt`` flag takes precedence over ``type``.
        """
        doc_id = _require_id(doc_id)
        is_debt = bool(data.get("isDebt")) or str(data.get("type", "")).lower() == "debt"
        try:
            return cls(
                id=doc_id,
                name=str(data.get("name") or "Goal"),
                target_amount=to_decimal(data.get("targetAmount"), "targetAmount", Decimal("0")),
                current_amount=to_decimal(data.get("currentAmount"), "currentAmount", Decimal("0")),
                type=GoalType.DEBT if is_debt else GoalType.SAVINGS,
                due_date=_to_date(data.get("dueDate")),
            )
        except DocumentValidationError as e:
            e.doc_id = doc_id
            raise

    def to_document(self) -> dict:
        doc = {
            "name": self.name,
            "targetAmount": str(self.target_amount),
            "currentAmount": str(self.current_amount),
            "type": self.type.value,
            "isDebt": self.is_debt,
        }
        if self.due_date:
            doc["dueDate"] = self.due_date.isoformat()
        return doc


@dataclass(frozen=True, slots=True)
class Budget:
    """Monthly spending limit for one category."""

    id: str
    category: str
    limit: Decimal

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise DocumentValidationError("Budget limit cannot be negative", self.id)

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Budget":
        """Build a budget from a stored document.

        Older documents store the limit as ``amount``; ``limit`` wins when
        it is positive.
        """
        doc_id = _require_id(doc_id)
        try:
            limit = to_decimal(data.get("limit"), "limit", Decimal("0"))
            if limit <= 0:
                limit = to_decimal(data.get("amount"), "amount", Decimal("0"))
            return cls(
                id=doc_id,
                category=str(data.get("category") or DEFAULT_EXPENSE_CATEGORY),
                limit=limit,
            )
        except DocumentValidationError as e:
            e.doc_id = doc_id
            raise

    def to_document(self) -> dict:
        return {
            "category": self.category,
            "limit": str(self.limit),
            "amount": str(self.limit),
        }


@dataclass(frozen=True, slots=True)
class Account:
    """Manually tracked account.

    ``balance`` keeps the sign it was stored with. Liabilities count against
    net worth by magnitude regardless of that sign (see BalanceService).
    """

    id: str
    name: str
    balance: Decimal
    type: AccountType = AccountType.ASSET
    institution: Optional[str] = None

    @property
    def is_liability(self) -> bool:
        return self.type == AccountType.LIABILITY

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "Account":
        """Build an account from a stored document.

        An account is a liability when its type label mentions a liability
        or debt, or when it has no label and a negative balance.
        """
        doc_id = _require_id(doc_id)
        try:
            balance = to_decimal(data.get("balance"), "balance", Decimal("0"))
        except DocumentValidationError as e:
            e.doc_id = doc_id
            raise

        label = str(data.get("type") or data.get("accountType") or "").lower()
        if any(word in label for word in LIABILITY_LABELS):
            account_type = AccountType.LIABILITY
        elif not label and balance < 0:
            account_type = AccountType.LIABILITY
        else:
            account_type = AccountType.ASSET

        return cls(
            id=doc_id,
            name=str(data.get("name") or "Account"),
            balance=balance,
            type=account_type,
            institution=data.get("institution") or None,
        )

    def to_document(self) -> dict:
        doc = {
            "name": self.name,
            "balance": str(self.balance),
            "type": self.type.value,
        }
        if self.institution:
            doc["institution"] = self.institution
        return doc


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Denormalized profile document kept alongside the session."""

    id: str
    display_name: str = ""
    email: str = ""
    recurring_income: Decimal = Decimal("0")
    recurring_expenses: Decimal = Decimal("0")
    plan: str = FREE_PLAN

    @property
    def is_premium(self) -> bool:
        return self.plan != FREE_PLAN

    @property
    def recurring_net(self) -> Decimal:
        return self.recurring_income - self.recurring_expenses

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> "UserProfile":
        doc_id = _require_id(doc_id)
        try:
            return cls(
                id=doc_id,
                display_name=str(data.get("displayName") or ""),
                email=str(data.get("email") or ""),
                recurring_income=to_decimal(
                    data.get("recurringIncome"), "recurringIncome", Decimal("0")
                ),
                recurring_expenses=to_decimal(
                    data.get("recurringExpenses"), "recurringExpenses", Decimal("0")
                ),
                plan=str(data.get("plan") or FREE_PLAN).lower(),
            )
        except DocumentValidationError as e:
            e.doc_id = doc_id
            raise

    def to_document(self) -> dict:
        return {
            "displayName": self.display_name,
            "email": self.email,
            "recurringIncome": str(self.recurring_income),
            "recurringExpenses": str(self.recurring_expenses),
            "plan": self.plan,
        }
