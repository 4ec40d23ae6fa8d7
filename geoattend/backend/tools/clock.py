from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def campus_date(moment: datetime, utc_offset_hours: float = 0) -> date:
    """Takvim gününü kampüsün yerel saatine göre hesaplar (attendance kaydının günü)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone(timedelta(hours=utc_offset_hours))).date()
