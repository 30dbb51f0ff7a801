"""GRC aggregation schema.

Creates the organizational hierarchy, risks, controls, their association
(with the denormalized residual), validated risk-to-node associations and
the key-value configuration store.

Revision ID: grc_aggregation_001
Revises:
Create Date: 2026-10-17
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "grc_aggregation_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # 1.1 Organizational hierarchy
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_divisions (
        id              VARCHAR(36) PRIMARY KEY,
        code            VARCHAR(50) NOT NULL,
        name            VARCHAR(255) NOT NULL,
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_process_groups (
        id              VARCHAR(36) PRIMARY KEY,
        division_id     VARCHAR(36),
        code            VARCHAR(50) NOT NULL,
        name            VARCHAR(255) NOT NULL,
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_process_groups_division_id ON grc_process_groups(division_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_process_units (
        id              VARCHAR(36) PRIMARY KEY,
        group_id        VARCHAR(36),
        code            VARCHAR(50) NOT NULL,
        name            VARCHAR(255) NOT NULL,
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_process_units_group_id ON grc_process_units(group_id)")

    # ──────────────────────────────────────────────────────────────────────
    # 1.2 Risks & Controls
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_risks (
        id              VARCHAR(36) PRIMARY KEY,
        code            VARCHAR(50) NOT NULL,
        name            VARCHAR(255) NOT NULL,
        description     TEXT,
        probability     NUMERIC(4, 1) NOT NULL,
        impact          NUMERIC(4, 1) NOT NULL,
        inherent_risk   NUMERIC(5, 1) NOT NULL,
        division_id     VARCHAR(36),
        group_id        VARCHAR(36),
        unit_id         VARCHAR(36),
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_risks_unit ON grc_risks(unit_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_risks_group ON grc_risks(group_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_risks_division ON grc_risks(division_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_controls (
        id              VARCHAR(36) PRIMARY KEY,
        code            VARCHAR(50) NOT NULL,
        name            VARCHAR(255) NOT NULL,
        effectiveness   INTEGER NOT NULL,
        effect_target   VARCHAR(20) NOT NULL DEFAULT 'both',
        is_active       BOOLEAN NOT NULL DEFAULT TRUE,
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_risk_controls (
        id              VARCHAR(36) PRIMARY KEY,
        risk_id         VARCHAR(36) NOT NULL REFERENCES grc_risks(id),
        control_id      VARCHAR(36) NOT NULL REFERENCES grc_controls(id),
        residual_risk   NUMERIC(5, 1) NOT NULL DEFAULT 0,
        CONSTRAINT uq_grc_risk_controls_pair UNIQUE (risk_id, control_id)
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_risk_controls_risk ON grc_risk_controls(risk_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_risk_controls_control ON grc_risk_controls(control_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_risk_org_links (
        id                  VARCHAR(36) PRIMARY KEY,
        risk_id             VARCHAR(36) NOT NULL REFERENCES grc_risks(id),
        division_id         VARCHAR(36),
        group_id            VARCHAR(36),
        unit_id             VARCHAR(36),
        validation_status   VARCHAR(30) NOT NULL DEFAULT 'pending_validation',
        validated_at        TIMESTAMP,
        created_at          TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_risk_org_links_risk ON grc_risk_org_links(risk_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_grc_risk_org_links_status ON grc_risk_org_links(validation_status)")

    # ──────────────────────────────────────────────────────────────────────
    # 1.3 Configuration store
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS grc_system_config (
        id              VARCHAR(36) PRIMARY KEY,
        config_key      VARCHAR(100) UNIQUE NOT NULL,
        config_value    TEXT NOT NULL,
        description     TEXT,
        data_type       VARCHAR(20) NOT NULL DEFAULT 'string',
        is_active       BOOLEAN NOT NULL DEFAULT TRUE,
        created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)


def downgrade() -> None:
    drop_order = [
        "grc_system_config",
        "grc_risk_org_links",
        "grc_risk_controls",
        "grc_controls",
        "grc_risks",
        "grc_process_units",
        "grc_process_groups",
        "grc_divisions",
    ]
    for tbl in drop_order:
        op.execute(f"DROP TABLE IF EXISTS {tbl}")
