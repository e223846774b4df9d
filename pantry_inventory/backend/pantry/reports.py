"""Monthly usage report: totals, distinct users and the most withdrawn items."""
import calendar
import csv
import io
import logging
import re
from datetime import MINYEAR, datetime
from typing import Any, Dict, Iterable, Mapping, Tuple

from pantry.backend import Backend, BackendError
from pantry.errors import BackendFailure, ValidationFailure
from pantry.schemas import MonthlyReport, TopItem

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    "Janeiro", "Fevereiro", "Março", "Abril", "Maio", "Junho",
    "Julho", "Agosto", "Setembro", "Outubro", "Novembro", "Dezembro",
]
UNKNOWN_ITEM = "Item desconhecido"
TOP_ITEMS_LIMIT = 10

_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{2})$")


def parse_year_month(year_month: str) -> Tuple[int, int]:
    match = _YEAR_MONTH.match(year_month or "")
    if not match or int(match.group(1)) < MINYEAR or not 1 <= int(match.group(2)) <= 12:
        raise ValidationFailure("Mês inválido. Use o formato AAAA-MM.")
    return int(match.group(1)), int(match.group(2))


def month_bounds(year_month: str) -> Tuple[datetime, datetime]:
    """First and last instant of the calendar month, both inclusive."""
    year, month = parse_year_month(year_month)
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, 1), datetime(year, month, last_day, 23, 59, 59, 999999)


def month_label(year_month: str) -> str:
    year, month = parse_year_month(year_month)
    return f"{MONTH_NAMES[month - 1]} {year}"


def summarize_withdrawals(rows: Iterable[Mapping[str, Any]], year_month: str) -> MonthlyReport:
    """Aggregate withdrawal rows (each with an embedded ``item`` name) for one month.

    Items are grouped by name. Ties in the top list keep first-seen order.
    """
    rows = list(rows)
    stats: Dict[str, Dict[str, float]] = {}
    for row in rows:
        item = row.get("item") or {}
        name = item.get("name") or UNKNOWN_ITEM
        entry = stats.setdefault(name, {"total_quantity": 0.0, "withdrawal_count": 0})
        entry["total_quantity"] += row["quantity"]
        entry["withdrawal_count"] += 1

    top_items = sorted(
        (TopItem(item_name=name, **entry) for name, entry in stats.items()),
        key=lambda top: top.total_quantity,
        reverse=True,
    )[:TOP_ITEMS_LIMIT]

    total_withdrawals = len(rows)
    unique_users = len({row["user_id"] for row in rows})
    return MonthlyReport(
        year_month=year_month,
        month=month_label(year_month),
        total_withdrawals=total_withdrawals,
        total_quantity=sum(row["quantity"] for row in rows),
        unique_users=unique_users,
        average_per_user=round(total_withdrawals / unique_users, 1) if unique_users else 0.0,
        top_items=top_items,
    )


async def monthly_report(backend: Backend, year_month: str) -> MonthlyReport:
    start, end = month_bounds(year_month)
    try:
        result = await (
            backend.table("withdrawals")
            .select(
                "*",
                embed={"item": ("items", ["name", "unit"]), "user": ("users", ["full_name"])},
            )
            .gte("withdrawn_at", start)
            .lte("withdrawn_at", end)
            .execute()
        )
    except BackendError as e:
        logger.error(f"Error generating report for {year_month}: {e}")
        raise BackendFailure("Erro ao gerar relatório.") from e
    logger.info(f"Found {len(result.data)} withdrawals for {year_month}")
    return summarize_withdrawals(result.data, year_month)


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def report_filename(year_month: str) -> str:
    return f"relatorio-dispensa-{year_month}.csv"


def report_to_csv(report: MonthlyReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Relatório Mensal da Dispensa"])
    writer.writerow([f"Mês: {report.month}"])
    writer.writerow([f"Total de Retiradas: {report.total_withdrawals}"])
    writer.writerow([f"Quantidade Total Retirada: {_number(report.total_quantity)}"])
    writer.writerow([f"Usuários Únicos: {report.unique_users}"])
    writer.writerow([])
    writer.writerow(["Itens Mais Retirados"])
    writer.writerow(["Item", "Quantidade Total", "Número de Retiradas"])
    for top in report.top_items:
        writer.writerow([top.item_name, _number(top.total_quantity), top.withdrawal_count])
    return buffer.getvalue()
