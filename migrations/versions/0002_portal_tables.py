"""tags, groups, monthly reports and articles

Revision ID: 0002_portal
Revises: 0001_core
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0002_portal"
down_revision: Union[str, Sequence[str], None] = "0001_core"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    if "tags" not in existing_tables:
        op.create_table(
            "tags",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(32), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="unfixed"),
            *_timestamps(),
            sa.UniqueConstraint("name"),
        )

    if "groups" not in existing_tables:
        op.create_table(
            "groups",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(64), nullable=False),
            sa.Column("email", sa.String(320), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True),
            *_timestamps(),
        )

    if "group_assignments" not in existing_tables:
        op.create_table(
            "group_assignments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("group_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("group_id", "user_id", name="uq_group_assignments_group_user"),
        )
        op.create_index("ix_group_assignments_group_id", "group_assignments", ["group_id"])
        op.create_index("ix_group_assignments_user_id", "group_assignments", ["user_id"])

    if "monthly_reports" not in existing_tables:
        op.create_table(
            "monthly_reports",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("target_month", sa.Date(), nullable=False),
            sa.Column("shipped_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("business_content", sa.Text(), nullable=True),
            sa.Column("looking_back", sa.Text(), nullable=True),
            sa.Column("project_summary", sa.Text(), nullable=True),
            sa.Column("next_month_goals", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("user_id", "target_month", name="uq_monthly_reports_user_month"),
        )
        op.create_index("idx_monthly_reports_target_month", "monthly_reports", ["target_month"])

    if "monthly_report_tags" not in existing_tables:
        op.create_table(
            "monthly_report_tags",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("monthly_report_id", sa.Integer(), nullable=False),
            sa.Column("tag_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["monthly_report_id"], ["monthly_reports.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("monthly_report_id", "tag_id", name="uq_monthly_report_tags_report_tag"),
        )
        op.create_index("ix_monthly_report_tags_monthly_report_id", "monthly_report_tags", ["monthly_report_id"])
        op.create_index("ix_monthly_report_tags_tag_id", "monthly_report_tags", ["tag_id"])

    if "monthly_working_processes" not in existing_tables:
        flags = [
            sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.text("false"))
            for name in (
                "requirement_definition",
                "basic_design",
                "detailed_design",
                "implementation",
                "unit_test",
                "integration_test",
                "operation",
                "maintenance",
                "other",
            )
        ]
        op.create_table(
            "monthly_working_processes",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("monthly_report_id", sa.Integer(), nullable=False),
            *flags,
            sa.ForeignKeyConstraint(["monthly_report_id"], ["monthly_reports.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("monthly_report_id"),
        )

    if "monthly_report_comments" not in existing_tables:
        op.create_table(
            "monthly_report_comments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("monthly_report_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("body", sa.Text(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["monthly_report_id"], ["monthly_reports.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        )
        op.create_index("ix_monthly_report_comments_monthly_report_id", "monthly_report_comments", ["monthly_report_id"])

    if "monthly_report_likes" not in existing_tables:
        op.create_table(
            "monthly_report_likes",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("monthly_report_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.ForeignKeyConstraint(["monthly_report_id"], ["monthly_reports.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("monthly_report_id", "user_id", name="uq_monthly_report_likes_report_user"),
        )
        op.create_index("ix_monthly_report_likes_monthly_report_id", "monthly_report_likes", ["monthly_report_id"])

    if "articles" not in existing_tables:
        op.create_table(
            "articles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(100), nullable=True),
            sa.Column("body", sa.Text(), nullable=True),
            sa.Column("shipped_at", sa.DateTime(timezone=False), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        )
        op.create_index("ix_articles_user_id", "articles", ["user_id"])
        op.create_index("idx_articles_shipped_at", "articles", ["shipped_at"])

    if "article_tags" not in existing_tables:
        op.create_table(
            "article_tags",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("article_id", sa.Integer(), nullable=False),
            sa.Column("tag_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["article_id"], ["articles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("article_id", "tag_id", name="uq_article_tags_article_tag"),
        )
        op.create_index("ix_article_tags_article_id", "article_tags", ["article_id"])
        op.create_index("ix_article_tags_tag_id", "article_tags", ["tag_id"])

    if "article_comments" not in existing_tables:
        op.create_table(
            "article_comments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("article_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("body", sa.Text(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["article_id"], ["articles.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        )
        op.create_index("ix_article_comments_article_id", "article_comments", ["article_id"])


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "article_comments",
        "article_tags",
        "articles",
        "monthly_report_likes",
        "monthly_report_comments",
        "monthly_working_processes",
        "monthly_report_tags",
        "monthly_reports",
        "group_assignments",
        "groups",
        "tags",
    ):
        op.drop_table(table)
