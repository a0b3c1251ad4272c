"""Paid orders CSV export."""
import csv
import io
from typing import Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from sales_engine.business_time import BusinessCalendar
from sales_engine.models import OrderRecord
from web.config import EXPORT_RATE_LIMIT
from ._deps import (
    limiter, get_logger, sales_service,
    validate_date_range,
    ValidationError,
)

router = APIRouter(prefix="/orders", tags=["orders"])
logger = get_logger(__name__)

CSV_HEADER = [
    "id", "created_at", "business_date", "status",
    "amount", "payment_provider", "provider", "plan",
]
ROWS_PER_CHUNK = 1000


def _csv_row(record: OrderRecord, calendar: BusinessCalendar) -> List[str]:
    created_at = record.created_at.astimezone(calendar.tz) if record.created_at else None
    cents = record.amount_value
    amount = cents / 100 if cents is not None else None
    return [
        record.id,
        created_at.isoformat() if created_at else "",
        created_at.date().isoformat() if created_at else "",
        record.status,
        f"{amount:.2f}" if amount is not None else "",
        record.payment_provider or "",
        record.provider or "",
        record.plan or "",
    ]


def iter_csv(records: List[OrderRecord], calendar: BusinessCalendar) -> Iterator[str]:
    """Yield the CSV in chunks so large exports are not built as one string."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)

    for index, record in enumerate(records, start=1):
        writer.writerow(_csv_row(record, calendar))
        if index % ROWS_PER_CHUNK == 0:
            yield output.getvalue()
            output.seek(0)
            output.truncate(0)

    yield output.getvalue()


@router.get("/export/csv")
@limiter.limit(EXPORT_RATE_LIMIT)
async def export_paid_orders_csv(
    request: Request,
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD (business timezone)"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD (business timezone)"),
):
    """Export paid orders as a CSV file."""
    try:
        start, end = validate_date_range(start_date, end_date)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    service = sales_service.get_stats_service()
    result = await service.export_paid_orders(start, end)

    filename = f"paid_orders_{start or 'all'}_{end or 'now'}.csv"
    headers = {
        "Content-Disposition": f"attachment; filename={filename}",
        "X-Total-Count": str(len(result.records)),
    }
    if result.truncated:
        headers["X-Truncated"] = "true"
    if result.partial:
        headers["X-Partial"] = "true"

    return StreamingResponse(
        iter_csv(result.records, service.calendar),
        media_type="text/csv",
        headers=headers,
    )
