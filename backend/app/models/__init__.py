from app.models.user import User, UserSession, PasswordHistory
from app.models.refresh_token import RefreshToken
from app.models.verification_code import VerificationCode
from app.models.follow import UserFollow
from app.models.rating import UserRating
from app.models.category import Category
from app.models.listing import Listing, ListingImage, ListingFavorite
from app.models.review import ListingReview
from app.models.conversation import Conversation, ConversationDeletion, Message
from app.models.notification import Notification
from app.models.push_token import PushToken
from app.models.report import Report
from app.models.app_version import AppVersion

__all__ = [
    "User",
    "UserSession",
    "PasswordHistory",
    "RefreshToken",
    "VerificationCode",
    "UserFollow",
    "UserRating",
    "Category",
    "Listing",
    "ListingImage",
    "ListingFavorite",
    "ListingReview",
    "Conversation",
    "ConversationDeletion",
    "Message",
    "Notification",
    "PushToken",
    "Report",
    "AppVersion",
]
