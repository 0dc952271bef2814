# src/activitypub_stage/models/__init__.py
"""SQLAlchemy models for the federation service."""

from .actor import Actor, ActorKind
from .blocked_instance import BlockedInstance
from .community import Sub, SubModerator
from .delivery import DeliveryLog, OutboundActivity
from .federation_settings import (
    PostFederationSettings,
    SubFederationSettings,
    UserFederationSettings,
)
from .follower import Follower
from .interaction import RemoteInteraction, RemoteReply
from .post import Post
from .user import User

__all__ = [
    "Actor", "ActorKind",
    "BlockedInstance",
    "Sub", "SubModerator",
    "DeliveryLog", "OutboundActivity",
    "PostFederationSettings", "SubFederationSettings", "UserFederationSettings",
    "Follower",
    "RemoteInteraction", "RemoteReply",
    "Post",
    "User",
]
