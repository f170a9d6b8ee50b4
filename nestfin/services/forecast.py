"""Forecast service for projecting savings forward."""

from dataclasses import dataclass
from decimal import Decimal

from nestfin.domain.models import round_half_up

ZERO = Decimal("0")
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class ProjectionPoint:
    year: int
    savings: Decimal

    @property
    def label(self) -> str:
        return f"Year {self.year}"


class ForecastService:
    """Projects savings growth from a steady monthly contribution."""

    def annual_contribution(self, monthly_savings: Decimal) -> Decimal:
        """Twelve months of savings; negative savings count as zero."""
        return max(monthly_savings, ZERO) * MONTHS_PER_YEAR

    def savings_projection(
        self,
        monthly_savings: Decimal,
        years: int = 5,
        rate: Decimal = Decimal("0.05"),
    ) -> list[ProjectionPoint]:
        """Compound yearly contributions over a horizon.

        Each year adds twelve months of savings to the running total, then
        applies growth: ``running = (running + 12 * savings) * (1 + rate)``.

        Args:
            monthly_savings: Amount set aside per month (clamped at 0)
            years: Horizon in years
            rate: Annual growth rate as a fraction

        Returns:
            One point per year, rounded to cents

        Example:
            >>> service.savings_projection(Decimal("100"), years=2, rate=Decimal("0.1"))
            [ProjectionPoint(year=1, savings=Decimal('1320.00')),
             ProjectionPoint(year=2, savings=Decimal('2772.00'))]
        """
        contribution = self.annual_contribution(monthly_savings)
        growth = 1 + Decimal(str(rate))
        running = ZERO
        projection = []
        for year in range(1, years + 1):
            running = (running + contribution) * growth
            projection.append(ProjectionPoint(year, round_half_up(running, 2)))
        return projection
