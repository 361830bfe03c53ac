# chatrelay/models/base.py
import time

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def now_ts() -> float:
    """Creation timestamps are epoch seconds; they are the only ordering key."""
    return time.time()
