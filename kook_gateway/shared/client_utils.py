from datetime import datetime, timezone


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every gateway client calls this once in __init__.
    Keys: frames_received, events_dispatched, decode_errors, heartbeats_sent,
          reconnect_count, last_event_at, connected_at.
    """
    return {
        "frames_received": 0,
        "events_dispatched": 0,
        "decode_errors": 0,
        "heartbeats_sent": 0,
        "reconnect_count": 0,
        "last_event_at": None,
        "connected_at": None,
    }


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
