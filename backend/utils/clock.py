"""
Time helpers.

All timestamps are stored as naive UTC datetimes. VNPay expects its dates in
Vietnam local time (GMT+7), formatted yyyyMMddHHmmss.
"""
from datetime import datetime, timedelta, timezone

VIETNAM_TZ = timezone(timedelta(hours=7))


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (matches DB columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_vnpay_date(moment: datetime) -> str:
    """Render a naive-UTC or aware datetime as VNPay's yyyyMMddHHmmss in GMT+7."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(VIETNAM_TZ).strftime("%Y%m%d%H%M%S")


def isoformat(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    return moment.isoformat()
