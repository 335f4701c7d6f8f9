"""Initial core schema: organizations, the six generic tables and the security audit log

MULTI-TENANT MIGRATION:
1. Creates 'core_organizations' as the tenant root, plus the platform organization
2. Creates core_entities, core_dynamic_data, core_relationships
3. Creates universal_transactions and universal_transaction_lines
4. Creates security_events (append-only audit trail)
5. Adds tenant-leading indexes for efficient tenant-scoped queries

Revision ID: tc001_initial_core_schema
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.sql import table, column


# revision identifiers, used by Alembic.
revision = 'tc001_initial_core_schema'
down_revision = None
branch_labels = None
depends_on = None

PLATFORM_ORGANIZATION_ID = '00000000-0000-0000-0000-000000000000'

SLOTS = {
    'text': 'field_value_text',
    'number': 'field_value_number',
    'boolean': 'field_value_boolean',
    'date': 'field_value_date',
    'datetime': 'field_value_datetime',
    'json': 'field_value_json',
}


def upgrade():
    # ==========================================================================
    # STEP 1: Tenant root
    # ==========================================================================
    op.create_table('core_organizations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_name', sa.String(length=255), nullable=False),
        sa.Column('organization_code', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='active'),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_core_organizations_organization_code', 'core_organizations', ['organization_code'], unique=True)
    op.create_index('ix_core_organizations_status', 'core_organizations', ['status'])

    organizations = table('core_organizations',
        column('id', sa.String),
        column('organization_name', sa.String),
        column('organization_code', sa.String),
        column('status', sa.String),
        column('settings', sa.JSON),
    )
    op.execute(
        organizations.insert().values(
            id=PLATFORM_ORGANIZATION_ID,
            organization_name='Platform',
            organization_code='PLATFORM',
            status='active',
            settings={},
        )
    )

    # ==========================================================================
    # STEP 2: Entities, dynamic data, relationships
    # ==========================================================================
    op.create_table('core_entities',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('entity_type', sa.String(length=100), nullable=False),
        sa.Column('entity_name', sa.String(length=255), nullable=False),
        sa.Column('entity_code', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='active'),
        sa.Column('smart_code', sa.String(length=255), nullable=False),
        sa.Column('parent_entity_id', sa.String(length=36), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['organization_id'], ['core_organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'entity_type', 'entity_code', name='uq_core_entities_org_type_code')
    )
    op.create_index('ix_core_entities_organization_id', 'core_entities', ['organization_id'])
    op.create_index('ix_core_entities_parent_entity_id', 'core_entities', ['parent_entity_id'])
    op.create_index('ix_core_entities_org_type', 'core_entities', ['organization_id', 'entity_type'])
    op.create_index('ix_core_entities_org_status', 'core_entities', ['organization_id', 'status'])

    slot_count = " + ".join(f"(CASE WHEN {slot} IS NOT NULL THEN 1 ELSE 0 END)" for slot in SLOTS.values())
    slot_matches = " OR ".join(f"(field_type = '{t}' AND {slot} IS NOT NULL)" for t, slot in SLOTS.items())

    op.create_table('core_dynamic_data',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('entity_id', sa.String(length=36), nullable=False),
        sa.Column('field_name', sa.String(length=100), nullable=False),
        sa.Column('field_type', sa.String(length=20), nullable=False),
        sa.Column('field_value_text', sa.Text(), nullable=True),
        sa.Column('field_value_number', sa.Numeric(precision=28, scale=8), nullable=True),
        sa.Column('field_value_boolean', sa.Boolean(), nullable=True),
        sa.Column('field_value_date', sa.Date(), nullable=True),
        sa.Column('field_value_datetime', sa.DateTime(timezone=True), nullable=True),
        sa.Column('field_value_json', sa.JSON(none_as_null=True), nullable=True),
        sa.Column('smart_code', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['organization_id'], ['core_organizations.id']),
        sa.ForeignKeyConstraint(['entity_id'], ['core_entities.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'entity_id', 'field_name', name='uq_core_dynamic_data_org_entity_field'),
        sa.CheckConstraint(f"({slot_count}) = 1", name='ck_core_dynamic_data_single_value'),
        sa.CheckConstraint(slot_matches, name='ck_core_dynamic_data_slot_matches_type')
    )
    op.create_index('ix_core_dynamic_data_organization_id', 'core_dynamic_data', ['organization_id'])
    op.create_index('ix_core_dynamic_data_org_entity', 'core_dynamic_data', ['organization_id', 'entity_id'])

    op.create_table('core_relationships',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('from_entity_id', sa.String(length=36), nullable=False),
        sa.Column('to_entity_id', sa.String(length=36), nullable=False),
        sa.Column('relationship_type', sa.String(length=100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('relationship_data', sa.JSON(), nullable=False),
        sa.Column('smart_code', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['organization_id'], ['core_organizations.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_core_relationships_organization_id', 'core_relationships', ['organization_id'])
    op.create_index('ix_core_relationships_is_active', 'core_relationships', ['is_active'])
    op.create_index('ix_core_relationships_org_from', 'core_relationships', ['organization_id', 'from_entity_id', 'relationship_type'])
    op.create_index('ix_core_relationships_org_to', 'core_relationships', ['organization_id', 'to_entity_id', 'relationship_type'])

    # ==========================================================================
    # STEP 3: Transaction ledger
    # ==========================================================================
    op.create_table('universal_transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('transaction_type', sa.String(length=100), nullable=False),
        sa.Column('transaction_code', sa.String(length=100), nullable=True),
        sa.Column('smart_code', sa.String(length=255), nullable=False),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('source_entity_id', sa.String(length=36), nullable=True),
        sa.Column('target_entity_id', sa.String(length=36), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('transaction_status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['core_organizations.id']),
        sa.ForeignKeyConstraint(['source_entity_id'], ['core_entities.id']),
        sa.ForeignKeyConstraint(['target_entity_id'], ['core_entities.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_universal_transactions_organization_id', 'universal_transactions', ['organization_id'])
    op.create_index('ix_universal_transactions_transaction_code', 'universal_transactions', ['transaction_code'])
    op.create_index('ix_universal_transactions_source_entity_id', 'universal_transactions', ['source_entity_id'])
    op.create_index('ix_universal_transactions_target_entity_id', 'universal_transactions', ['target_entity_id'])
    op.create_index('ix_universal_transactions_org_type', 'universal_transactions', ['organization_id', 'transaction_type'])
    op.create_index('ix_universal_transactions_org_status', 'universal_transactions', ['organization_id', 'transaction_status'])
    op.create_index('ix_universal_transactions_org_date', 'universal_transactions', ['organization_id', 'transaction_date'])

    op.create_table('universal_transaction_lines',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('transaction_id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('line_entity_id', sa.String(length=36), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('unit_amount', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('line_amount', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('smart_code', sa.String(length=255), nullable=False),
        sa.Column('line_data', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['transaction_id'], ['universal_transactions.id']),
        sa.ForeignKeyConstraint(['organization_id'], ['core_organizations.id']),
        sa.ForeignKeyConstraint(['line_entity_id'], ['core_entities.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'line_number', name='uq_universal_transaction_lines_txn_line'),
        sa.CheckConstraint('line_number >= 1', name='ck_universal_transaction_lines_line_number')
    )
    op.create_index('ix_universal_transaction_lines_transaction_id', 'universal_transaction_lines', ['transaction_id'])
    op.create_index('ix_universal_transaction_lines_organization_id', 'universal_transaction_lines', ['organization_id'])
    op.create_index('ix_universal_transaction_lines_org_entity', 'universal_transaction_lines', ['organization_id', 'line_entity_id'])

    # ==========================================================================
    # STEP 4: Security audit trail
    # ==========================================================================
    op.create_table('security_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=True),
        sa.Column('actor_id', sa.String(length=36), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_security_events_organization_id', 'security_events', ['organization_id'])
    op.create_index('ix_security_events_actor_id', 'security_events', ['actor_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_occurred_at', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_org_occurred', 'security_events', ['organization_id', 'occurred_at'])


def downgrade():
    op.drop_table('security_events')
    op.drop_table('universal_transaction_lines')
    op.drop_table('universal_transactions')
    op.drop_table('core_relationships')
    op.drop_table('core_dynamic_data')
    op.drop_table('core_entities')
    op.drop_table('core_organizations')
