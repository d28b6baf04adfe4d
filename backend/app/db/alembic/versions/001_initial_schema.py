"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates all tables:
- tenant, agent
- document, document_tag, document_chunk (pgvector embedding)
- chat_session, chat_message
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

from backend.app.config import get_settings

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Create all tables."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # tenant table
    op.create_table(
        "tenant",
        _uuid_pk("tenant_id"),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        sa.Column("language", sa.Text(), server_default="pt", nullable=False),
        sa.Column("persona", sa.Text(), nullable=True),
        _created_at(),
    )

    # agent table
    op.create_table(
        "agent",
        _uuid_pk("agent_id"),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=True),
        sa.Column("access_level", sa.Integer(), server_default="0", nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant.tenant_id"]),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_agent_tenant_slug"),
    )

    # document table
    op.create_table(
        "document",
        _uuid_pk("document_id"),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("media_kind", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="PENDING", nullable=False),
        sa.Column("access_level", sa.Integer(), server_default="0", nullable=False),
        sa.Column("char_count", sa.Integer(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant.tenant_id"]),
        sa.CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="ck_document_status",
        ),
        sa.CheckConstraint(
            "media_kind IN ('TEXT', 'AUDIO', 'VIDEO')", name="ck_document_media_kind"
        ),
    )
    op.create_index("idx_document_tenant_created", "document", ["tenant_id", "created_at"])
    op.create_index("idx_document_status", "document", ["status", "processing_started_at"])

    # document_tag table
    op.create_table(
        "document_tag",
        sa.Column("document_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tag", sa.Text(), primary_key=True),
        sa.ForeignKeyConstraint(
            ["document_id"], ["document.document_id"], ondelete="CASCADE"
        ),
    )
    op.create_index("idx_document_tag_tag", "document_tag", ["tag"])

    # document_chunk table
    op.create_table(
        "document_chunk",
        _uuid_pk("chunk_id"),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("document_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(get_settings().embedding_dim), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        _created_at(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant.tenant_id"]),
        sa.ForeignKeyConstraint(
            ["document_id"], ["document.document_id"], ondelete="CASCADE"
        ),
    )
    op.create_index("idx_chunk_tenant", "document_chunk", ["tenant_id"])
    op.create_index("idx_chunk_document", "document_chunk", ["document_id", "position"])

    # chat_session table
    op.create_table(
        "chat_session",
        _uuid_pk("session_id"),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenant.tenant_id"]),
        sa.ForeignKeyConstraint(["agent_id"], ["agent.agent_id"]),
    )
    op.create_index("idx_session_tenant_updated", "chat_session", ["tenant_id", "updated_at"])

    # chat_message table
    op.create_table(
        "chat_message",
        _uuid_pk("message_id"),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("rating", sa.SmallInteger(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["session_id"], ["chat_session.session_id"], ondelete="CASCADE"
        ),
        sa.CheckConstraint("role IN ('user', 'assistant')", name="ck_chat_message_role"),
        sa.CheckConstraint("rating IN (1, -1)", name="ck_chat_message_rating"),
    )
    op.create_index("idx_message_session_created", "chat_message", ["session_id", "created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("chat_message")
    op.drop_table("chat_session")
    op.drop_table("document_chunk")
    op.drop_table("document_tag")
    op.drop_table("document")
    op.drop_table("agent")
    op.drop_table("tenant")
