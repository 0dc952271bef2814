# src/activitypub_stage/schemas/federation.py
"""Federation settings Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel


class ActorSummary(BaseModel):
    """Federated identity shown next to a user's or sub's settings."""

    uri: str
    handle: str
    followers: int


class UserFederationSettingsResponse(BaseModel):
    """Schema for a user's federation preferences."""

    federation_enabled: bool
    federation_enabled_at: datetime | None
    default_federate_posts: bool
    indexable: bool
    show_followers_count: bool
    actor: ActorSummary | None = None


class UserFederationSettingsUpdate(BaseModel):
    """Schema for updating a user's federation preferences."""

    federation_enabled: bool | None = None
    default_federate_posts: bool | None = None
    indexable: bool | None = None
    show_followers_count: bool | None = None


class PostFederationSettingsResponse(BaseModel):
    """Schema for a post's federation state."""

    post_id: int
    should_federate: bool
    is_federated: bool
    federated_at: datetime | None
    note_uri: str | None
    can_federate: bool


class PostFederationSettingsUpdate(BaseModel):
    """Schema for opting a post in or out of federation."""

    should_federate: bool


class SubFederationSettingsResponse(BaseModel):
    """Schema for a sub's federation preferences."""

    sub_id: int
    federation_enabled: bool
    federation_enabled_at: datetime | None
    auto_announce: bool
    accept_remote_posts: bool
    actor: ActorSummary | None = None


class SubFederationSettingsUpdate(BaseModel):
    """Schema for updating a sub's federation preferences."""

    federation_enabled: bool | None = None
    auto_announce: bool | None = None


class AnnounceResponse(BaseModel):
    message: str
    post_id: int
    sub_id: int


class AnnounceablePost(BaseModel):
    """A published sub post that has not been federated yet."""

    id: int
    title: str
    slug: str
    published_at: datetime | None


class AnnounceableResponse(BaseModel):
    posts: list[AnnounceablePost]


class PublicUserActor(BaseModel):
    """Public federation identity of a user."""

    username: str
    name: str
    handle: str
    uri: str
    followers: int | None
    icon: str | None


class PublicGroupActor(BaseModel):
    """Public federation identity of a sub."""

    name: str
    display_name: str
    handle: str
    uri: str
    followers: int
    icon: str | None


class FederationStatus(BaseModel):
    """Public view of the instance actor."""

    enabled: bool
    actor: str | None
    username: str | None
    followers: int
