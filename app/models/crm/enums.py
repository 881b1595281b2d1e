import enum


class PlatformType(enum.Enum):
    line = "line"
    facebook = "facebook"
    website = "website"


class CustomerStatus(enum.Enum):
    active = "active"
    inactive = "inactive"
    blocked = "blocked"


class MessageDirection(enum.Enum):
    inbound = "inbound"
    outbound = "outbound"


class ContentType(enum.Enum):
    text = "text"
    image = "image"
    video = "video"
    audio = "audio"
    file = "file"
    location = "location"
    sticker = "sticker"
    template = "template"
    postback = "postback"
    other = "other"


class EventKind(enum.Enum):
    text = "text"
    image = "image"
    message = "message"  # any other content-bearing message (media, sticker, location)
    postback = "postback"
    follow = "follow"
    unfollow = "unfollow"
    membership = "membership"  # join/leave/member joined/member left
    other = "other"


class SyncStatus(enum.Enum):
    pending = "pending"
    running = "running"
    success = "success"
    failed = "failed"


TERMINAL_SYNC_STATUSES = frozenset({SyncStatus.success, SyncStatus.failed})
