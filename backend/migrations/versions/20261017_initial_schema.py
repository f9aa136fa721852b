"""Users, sessions, clients, products, opportunities and their transitions

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


STATES_SQL = "'nueva', 'en_seguimiento', 'enviar_cotizacion', 'cotizacion_enviada', 'ganada', 'perdida', 'cerrada'"


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("role IN ('admin', 'user')", name="ck_users_role"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_username", ["username"], unique=True)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)
        batch_op.create_index("ix_session_tokens_expires_at", ["expires_at"], unique=False)
        batch_op.create_index("ix_session_tokens_user_active", ["user_id", "is_revoked"], unique=False)

    op.create_table(
        "clients",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("razon_social", sa.String(255), nullable=True),
        sa.Column("nombre_establecimiento", sa.String(255), nullable=True),
        sa.Column("localidad", sa.String(128), nullable=True),
        sa.Column("provincia", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("nombre_equipo", sa.String(255), nullable=False),
        sa.Column("marca", sa.String(128), nullable=True),
        sa.Column("modelo", sa.String(128), nullable=True),
        sa.Column("rubro", sa.String(128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "opportunities",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("client_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("state", sa.String(32), nullable=False),
        sa.Column("product_kind", sa.String(16), nullable=True),
        sa.Column("product_id", sa.String(36), nullable=True),
        sa.Column("estimated_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("state_seq", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pending_transitions", sa.JSON(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint(f"state IN ({STATES_SQL})", name="ck_opportunities_state"),
        sa.CheckConstraint(
            "(product_kind IS NULL AND product_id IS NULL)"
            " OR (product_kind = 'consumibles' AND product_id IS NULL)"
            " OR (product_kind = 'catalogo' AND product_id IS NOT NULL)",
            name="ck_opportunities_product_association",
        ),
        sa.CheckConstraint("estimated_value IS NULL OR estimated_value >= 0", name="ck_opportunities_value"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("opportunities", schema=None) as batch_op:
        batch_op.create_index("ix_opportunities_client_id", ["client_id"], unique=False)
        batch_op.create_index("ix_opportunities_created_by", ["created_by"], unique=False)
        batch_op.create_index("ix_opportunities_owner_created", ["created_by", "created_at"], unique=False)
        batch_op.create_index("ix_opportunities_state", ["state"], unique=False)

    op.create_table(
        "opportunity_transitions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("opportunity_id", sa.String(32), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("from_state", sa.String(32), nullable=True),
        sa.Column("to_state", sa.String(32), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint(f"from_state IS NULL OR from_state IN ({STATES_SQL})", name="ck_opportunity_transitions_from"),
        sa.CheckConstraint(f"to_state IN ({STATES_SQL})", name="ck_opportunity_transitions_to"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["opportunities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["changed_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("opportunity_id", "seq", name="uq_opportunity_transitions_seq"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("opportunity_transitions", schema=None) as batch_op:
        batch_op.create_index("ix_opportunity_transitions_opportunity_id", ["opportunity_id"], unique=False)
        batch_op.create_index("ix_opportunity_transitions_opp_created", ["opportunity_id", "created_at"], unique=False)


def downgrade():
    op.drop_table("opportunity_transitions")
    op.drop_table("opportunities")
    op.drop_table("products")
    op.drop_table("clients")
    op.drop_table("session_tokens")
    op.drop_table("users")
