"""Initial schema: users, workspaces, project/task content, chat, audit log."""

from alembic import op
from sqlmodel import SQLModel

import sql_store  # noqa: F401


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    SQLModel.metadata.create_all(bind=bind, tables=SQLModel.metadata.sorted_tables)


def downgrade() -> None:
    bind = op.get_bind()
    SQLModel.metadata.drop_all(bind=bind, tables=SQLModel.metadata.sorted_tables)
