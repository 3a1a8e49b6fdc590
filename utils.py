import datetime


def utc_now():
    """Returns the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def format_timestamp(value):
    """Formats a datetime as an RFC 3339 UTC timestamp (e.g. 2024-05-10T08:00:00Z).

    Naive datetimes are assumed to already be in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    value = value.astimezone(datetime.timezone.utc)
    return value.isoformat(timespec='seconds').replace('+00:00', 'Z')


def parse_timestamp(text):
    """Parses an RFC 3339 timestamp into an aware datetime, or returns None if it can't."""
    if not text:
        return None
    text = text.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    try:
        value = datetime.datetime.fromisoformat(text)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value


def normalize_base_url(url):
    """Makes sure the base URL ends with a path separator."""
    if not url.endswith('/'):
        url += '/'
    return url


def read_bytes(source):
    """Returns the contents of a bytes-like object or a readable binary stream."""
    if source is None:
        return None
    if hasattr(source, 'read'):
        return source.read()
    return bytes(source)
