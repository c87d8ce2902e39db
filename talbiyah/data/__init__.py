"""Data service boundary: interface, SQL implementation, change notifications."""

from talbiyah.data.change_feed import ChangeEvent, ChangeFeed, Subscription
from talbiyah.data.service import DataService, Record
from talbiyah.data.sql_service import SqlDataService

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "Subscription",
    "DataService",
    "Record",
    "SqlDataService",
]
