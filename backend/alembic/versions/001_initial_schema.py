"""Initial schema: users, scholarships, applications, reviews

Revision ID: 001
Revises: None
Create Date: 2025-01-15 00:00:00.000000+00:00

What:  Creates the four tables with their uniqueness rules:
       one application and one review per (user, scholarship).
How:   Application/payment statuses are VARCHAR (non-native enums) so a new
       status needs no ALTER TYPE; the user role is a native PostgreSQL enum.

Rollback: downgrade() drops everything (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum("Student", "Moderator", "Admin", name="user_role")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("photo_url", sa.String(500), nullable=False, server_default=""),
        # NULL for federated-identity accounts
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="Student"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "scholarships",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("scholarship_name", sa.String(255), nullable=False),
        sa.Column("university_name", sa.String(255), nullable=False),
        sa.Column("university_image", sa.String(500), nullable=False, server_default=""),
        sa.Column("university_country", sa.String(120), nullable=False),
        sa.Column("university_city", sa.String(120), nullable=False),
        sa.Column("university_world_rank", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("subject_category", sa.String(120), nullable=False),
        sa.Column("scholarship_category", sa.String(50), nullable=False),
        sa.Column("degree", sa.String(50), nullable=False),
        sa.Column("tuition_fees", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("application_fees", sa.Numeric(10, 2), nullable=False),
        sa.Column("service_charge", sa.Numeric(10, 2), nullable=False),
        sa.Column("application_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("posted_user_email", sa.String(255), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "applications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("scholarship_id", sa.Uuid(), sa.ForeignKey("scholarships.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_name", sa.String(120), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("university_name", sa.String(255), nullable=False),
        sa.Column("scholarship_category", sa.String(50), nullable=False),
        sa.Column("degree", sa.String(50), nullable=False),
        sa.Column("application_fees", sa.Numeric(10, 2), nullable=False),
        sa.Column("service_charge", sa.Numeric(10, 2), nullable=False),
        sa.Column("application_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="unpaid"),
        sa.Column("feedback", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "scholarship_id", name="uq_applications_user_scholarship"),
    )
    op.create_index("ix_applications_scholarship_id", "applications", ["scholarship_id"])
    op.create_index("ix_applications_user_id", "applications", ["user_id"])
    op.create_index(
        "idx_applications_created_at",
        "applications",
        [sa.text("created_at DESC")],
    )

    op.create_table(
        "reviews",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("scholarship_id", sa.Uuid(), sa.ForeignKey("scholarships.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("university_name", sa.String(255), nullable=False),
        sa.Column("user_name", sa.String(120), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("user_image", sa.String(500), nullable=False, server_default=""),
        sa.Column("rating_point", sa.Integer(), nullable=False),
        sa.Column("review_comment", sa.Text(), nullable=False),
        sa.Column("review_date", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("user_id", "scholarship_id", name="uq_reviews_user_scholarship"),
        sa.CheckConstraint("rating_point BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
    )
    op.create_index("ix_reviews_scholarship_id", "reviews", ["scholarship_id"])


def downgrade() -> None:
    op.drop_index("ix_reviews_scholarship_id", table_name="reviews")
    op.drop_table("reviews")
    op.drop_index("idx_applications_created_at", table_name="applications")
    op.drop_index("ix_applications_user_id", table_name="applications")
    op.drop_index("ix_applications_scholarship_id", table_name="applications")
    op.drop_table("applications")
    op.drop_table("scholarships")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    user_role.drop(op.get_bind(), checkfirst=True)
