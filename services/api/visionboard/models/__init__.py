"""Vision board database models."""

from visionboard.models.affirmation import Affirmation
from visionboard.models.export_job import ExportJob, ExportState, TemplateImage
from visionboard.models.gift_code import GiftCode, GiftCodeRedemption
from visionboard.models.oauth_state import OAuthPollTokenRow, PkceStateRow
from visionboard.models.sync import Board, ChecklistEvent, HabitCompletion, UserSettings
from visionboard.models.user import User

__all__ = [
    "User",
    "PkceStateRow",
    "OAuthPollTokenRow",
    "GiftCode",
    "GiftCodeRedemption",
    "UserSettings",
    "Board",
    "HabitCompletion",
    "ChecklistEvent",
    "ExportJob",
    "ExportState",
    "TemplateImage",
    "Affirmation",
]
