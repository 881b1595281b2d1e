import uuid


def coerce_uuid(value):
    """Return ``value`` as a UUID; None passes through, malformed input raises ValueError."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def apply_pagination(query, limit: int, offset: int):
    return query.limit(limit).offset(offset)
