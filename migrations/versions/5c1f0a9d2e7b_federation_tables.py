"""federation tables

Revision ID: 5c1f0a9d2e7b
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1f0a9d2e7b"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create content tables and every federation table."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_table(
        "subs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon_url", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "sub_moderators",
        sa.Column("sub_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["sub_id"], ["subs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("sub_id", "user_id"),
    )
    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("sub_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("federation_likes_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("federation_shares_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("federation_replies_count", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sub_id"], ["subs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "activitypub_actors",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("icon_url", sa.Text(), nullable=True),
        sa.Column("actor_uri", sa.String(length=512), nullable=False),
        sa.Column("inbox_uri", sa.String(length=512), nullable=False),
        sa.Column("outbox_uri", sa.String(length=512), nullable=False),
        sa.Column("followers_uri", sa.String(length=512), nullable=False),
        sa.Column("public_key", sa.Text(), nullable=False),
        sa.Column("private_key", sa.Text(), nullable=False),
        sa.Column("key_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("actor_uri"),
        sa.UniqueConstraint("kind", "entity_id", name="uq_activitypub_actors_kind_entity"),
        sa.UniqueConstraint("kind", "username", name="uq_activitypub_actors_kind_username"),
    )
    op.create_table(
        "activitypub_followers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("follower_uri", sa.String(length=512), nullable=False),
        sa.Column("follower_inbox", sa.String(length=512), nullable=False),
        sa.Column("follower_shared_inbox", sa.String(length=512), nullable=True),
        sa.Column("follower_domain", sa.String(length=255), nullable=False),
        sa.Column("follower_username", sa.String(length=255), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["actor_id"], ["activitypub_actors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("actor_id", "follower_uri", name="uq_activitypub_followers_edge"),
    )
    op.create_index(
        "ix_activitypub_followers_follower_uri", "activitypub_followers", ["follower_uri"]
    )
    op.create_index(
        "ix_activitypub_followers_domain", "activitypub_followers", ["actor_id", "follower_domain"]
    )

    op.create_table(
        "activitypub_user_settings",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("federation_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("enabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("default_federate_posts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("indexable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("show_followers_count", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_table(
        "activitypub_sub_settings",
        sa.Column("sub_id", sa.Integer(), nullable=False),
        sa.Column("federation_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("enabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_announce", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("accept_remote_posts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["sub_id"], ["subs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("sub_id"),
    )
    op.create_table(
        "activitypub_post_settings",
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("should_federate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_federated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("federated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("note_uri", sa.String(length=512), nullable=True),
        sa.Column("activity_uri", sa.String(length=512), nullable=True),
        sa.Column("publications", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("post_id"),
    )

    op.create_table(
        "activitypub_outbound_activities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("activity_id", sa.String(length=512), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("activity_type", sa.VARCHAR(length=32), nullable=False),
        sa.Column("object_uri", sa.String(length=512), nullable=True),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["actor_id"], ["activitypub_actors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("activity_id"),
    )
    op.create_index(
        "ix_activitypub_outbound_activities_object_uri",
        "activitypub_outbound_activities",
        ["object_uri"],
    )
    op.create_table(
        "activitypub_delivery_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("activity_id", sa.String(length=512), nullable=False),
        sa.Column("local_actor_id", sa.Integer(), nullable=False),
        sa.Column("target_inbox", sa.String(length=512), nullable=False),
        sa.Column("target_domain", sa.String(length=255), nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.SmallInteger(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_status_code", sa.SmallInteger(), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["activity_id"],
            ["activitypub_outbound_activities.activity_id"],
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["local_actor_id"], ["activitypub_actors.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("activity_id", "target_inbox", name="uq_activitypub_delivery_target"),
    )
    op.create_index(
        "ix_activitypub_delivery_due", "activitypub_delivery_logs", ["status", "next_retry_at"]
    )
    op.create_index(
        "ix_activitypub_delivery_order",
        "activitypub_delivery_logs",
        ["local_actor_id", "target_domain", "id"],
    )

    op.create_table(
        "activitypub_blocked_instances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("block_type", sa.VARCHAR(length=16), nullable=False, server_default="full"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("domain"),
    )

    op.create_table(
        "activitypub_remote_interactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("remote_actor_uri", sa.String(length=512), nullable=False),
        sa.Column("kind", sa.VARCHAR(length=16), nullable=False),
        sa.Column("activity_uri", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "post_id", "remote_actor_uri", "kind", name="uq_activitypub_remote_interaction"
        ),
    )
    op.create_index(
        "ix_activitypub_remote_interactions_remote_actor_uri",
        "activitypub_remote_interactions",
        ["remote_actor_uri"],
    )
    op.create_table(
        "activitypub_remote_replies",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source_uri", sa.String(length=512), nullable=False),
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("remote_actor_uri", sa.String(length=512), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["posts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_uri"),
    )
    op.create_index(
        "ix_activitypub_remote_replies_remote_actor_uri",
        "activitypub_remote_replies",
        ["remote_actor_uri"],
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index("ix_activitypub_remote_replies_remote_actor_uri", "activitypub_remote_replies")
    op.drop_table("activitypub_remote_replies")
    op.drop_index(
        "ix_activitypub_remote_interactions_remote_actor_uri", "activitypub_remote_interactions"
    )
    op.drop_table("activitypub_remote_interactions")
    op.drop_table("activitypub_blocked_instances")
    op.drop_index("ix_activitypub_delivery_order", "activitypub_delivery_logs")
    op.drop_index("ix_activitypub_delivery_due", "activitypub_delivery_logs")
    op.drop_table("activitypub_delivery_logs")
    op.drop_index(
        "ix_activitypub_outbound_activities_object_uri", "activitypub_outbound_activities"
    )
    op.drop_table("activitypub_outbound_activities")
    op.drop_table("activitypub_post_settings")
    op.drop_table("activitypub_sub_settings")
    op.drop_table("activitypub_user_settings")
    op.drop_index("ix_activitypub_followers_domain", "activitypub_followers")
    op.drop_index("ix_activitypub_followers_follower_uri", "activitypub_followers")
    op.drop_table("activitypub_followers")
    op.drop_table("activitypub_actors")
    op.drop_table("posts")
    op.drop_table("sub_moderators")
    op.drop_table("subs")
    op.drop_table("users")
