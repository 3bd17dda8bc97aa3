"""001 – Initial schema: users, sessions, leave requests, audit trail.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["user", "admin"]),
    ("leave_status", ["pending", "approved", "rejected"]),
    ("leave_type", ["full", "half"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users (identity + leave ledger) ────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name                VARCHAR(150) NOT NULL,
            email               VARCHAR(255) NOT NULL UNIQUE,
            password_hash       VARCHAR(255) NOT NULL,
            role                user_role NOT NULL DEFAULT 'user',
            annual_leave_quota  INTEGER NOT NULL DEFAULT 20,
            remaining_leaves    NUMERIC(6,1) NOT NULL DEFAULT 20,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_users_quota_non_negative CHECK (annual_leave_quota >= 0)
        )
    """)

    # ── 2. user_sessions ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE user_sessions (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id     UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            token_hash  VARCHAR(64) NOT NULL,
            ip_address  INET,
            user_agent  TEXT,
            expires_at  TIMESTAMPTZ NOT NULL,
            is_revoked  BOOLEAN NOT NULL DEFAULT FALSE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_user_sessions_user_id ON user_sessions(user_id)")
    op.execute("CREATE INDEX ix_user_sessions_token_hash ON user_sessions(token_hash)")

    # ── 3. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id         UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            start_date      DATE NOT NULL,
            end_date        DATE NOT NULL,
            leave_type      leave_type NOT NULL DEFAULT 'full',
            status          leave_status NOT NULL DEFAULT 'pending',
            reason          TEXT NOT NULL DEFAULT '',
            number_of_days  NUMERIC(6,1) NOT NULL,
            reviewed_by     UUID REFERENCES users(id) ON DELETE SET NULL,
            reviewed_at     TIMESTAMPTZ,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_leave_requests_user_id ON leave_requests(user_id)")
    op.execute(
        "CREATE INDEX ix_leave_requests_status_dates "
        "ON leave_requests(status, start_date, end_date)"
    )

    # ── 4. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID REFERENCES users(id) ON DELETE SET NULL,
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            ip_address  INET,
            user_agent  TEXT,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    for t in ["audit_trail", "leave_requests", "user_sessions", "users"]:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
