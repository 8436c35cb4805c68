"""Create boards and items tables

Revision ID: 001_boards_items
Revises:
Create Date: 2026-10-18

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = "001_boards_items"
down_revision = None
branch_labels = None
depends_on = None

STAGES = ("backlog", "discussion", "production", "review", "roadblock", "done")


def upgrade() -> None:
    op.create_table(
        "boards",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("slug", sa.String(128), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("item_type", sa.String(64), nullable=False, server_default="idea"),
        sa.Column("threshold_to_discussion", sa.Integer, nullable=True),
        sa.Column("threshold_to_production", sa.Integer, nullable=True),
        sa.Column("threshold_to_backlog", sa.Integer, nullable=True),
        sa.Column("admins", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_boards_slug", "boards", ["slug"], unique=True)

    op.create_table(
        "items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "board_id",
            sa.String(36),
            sa.ForeignKey("boards.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("creator", sa.String(256), nullable=False),
        sa.Column("score", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "stage",
            sa.Enum(*STAGES, name="item_stage"),
            nullable=False,
            server_default="backlog",
        ),
        sa.Column("blocked_reason", sa.Text, nullable=True),
        sa.Column("voters", sa.JSON, nullable=False),
        sa.Column("history", sa.JSON, nullable=False),
        sa.Column("watchers", sa.JSON, nullable=False),
        sa.Column("comments", sa.JSON, nullable=False),
        sa.Column("checklist", sa.JSON, nullable=False),
        sa.Column("assignees", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column(
            "last_activity_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index("ix_items_board_id", "items", ["board_id"])
    op.create_index("ix_items_stage", "items", ["stage"])
    op.create_index("ix_items_board_stage", "items", ["board_id", "stage"])
    op.create_index("ix_items_board_activity", "items", ["board_id", "last_activity_at"])


def downgrade() -> None:
    op.drop_index("ix_items_board_activity", table_name="items")
    op.drop_index("ix_items_board_stage", table_name="items")
    op.drop_index("ix_items_stage", table_name="items")
    op.drop_index("ix_items_board_id", table_name="items")
    op.drop_table("items")
    op.drop_index("ix_boards_slug", table_name="boards")
    op.drop_table("boards")
    sa.Enum(name="item_stage").drop(op.get_bind(), checkfirst=True)
