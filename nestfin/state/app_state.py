"""Presentation-facing parameters and error channel.

AppState holds the values consumers choose (which period, which account,
which month) plus the last error to show, all as Observable containers.
Collection data lives in the DataStore, not here.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from nestfin.services.periods import DateRange, month_start, preset_range
from nestfin.state.observable import Observable


@dataclass
class AppState:
    """Consumer-selected parameters for the derived views.

    Example:
        >>> state = AppState()
        >>> state.account_filter.subscribe(lambda acc: print(f"Account: {acc}"))
        >>> state.account_filter.set("acc-1")
        # Prints: "Account: acc-1"
    """

    # View parameters
    date_range: Observable[DateRange] = field(
        default_factory=lambda: Observable(preset_range("this_month"))
    )
    account_filter: Observable[str] = field(default_factory=lambda: Observable("all"))
    selected_month: Observable[date] = field(
        default_factory=lambda: Observable(month_start(date.today()))
    )

    # Error state
    error_message: Observable[Optional[str]] = field(
        default_factory=lambda: Observable(None)
    )
    auth_error: Observable[Optional[str]] = field(
        default_factory=lambda: Observable(None)
    )

    def select_preset(self, name: str, today: Optional[date] = None) -> None:
        """Switch the date range to a named preset (see periods.PRESETS)."""
        self.date_range.set(preset_range(name, today))

    def select_month(self, reference: date) -> None:
        self.selected_month.set(month_start(reference))

    def set_error(self, message: Optional[str]) -> None:
        """Set error message.

        Args:
            message: Error message, or None to clear
        """
        self.error_message.set(message)

    def clear_error(self) -> None:
        """Clear error message."""
        self.error_message.set(None)

    def report_operation_error(self, operation: str, error: Exception) -> None:
        """Slot for DataStore.operation_failed."""
        self.error_message.set(f"{operation.replace('_', ' ').capitalize()} failed: {error}")
