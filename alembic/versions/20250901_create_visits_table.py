# alembic revision: create visits table
from alembic import op
import sqlalchemy as sa

# Reemplaza por el ID real si generas con 'alembic revision'
revision = '20250901_create_visits'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'visits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(128), nullable=False),
        sa.Column('whatsapp', sa.String(32), nullable=True),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True),
                  server_default=sa.text("now()"), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('session_duration', sa.Integer(), nullable=True),
        sa.Column('search_terms', sa.Text(), nullable=True),
        sa.Column('categories_visited', sa.Text(), nullable=True),
        sa.Column('products_viewed', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('has_cart', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cart_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('cart_items', sa.Integer(), nullable=True),
        sa.Column('cart_data', sa.Text(), nullable=True),
        sa.Column('last_activity', sa.TIMESTAMP(timezone=True),
                  server_default=sa.text("now()"), nullable=False),
        sa.Column('whatsapp_collected_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.text("now()"), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True),
                  server_default=sa.text("now()"), nullable=True),
        sa.CheckConstraint("status IN ('active','abandoned','completed')", name='ck_visit_valid_status'),
        sa.CheckConstraint("cart_value IS NULL OR cart_value >= 0", name='ck_visit_cart_value_nonneg'),
        sa.CheckConstraint("cart_items IS NULL OR cart_items >= 0", name='ck_visit_cart_items_nonneg'),
        sa.CheckConstraint(
            "NOT has_cart OR (cart_value IS NOT NULL AND cart_items IS NOT NULL)",
            name='ck_visit_cart_consistent',
        ),
    )
    op.create_unique_constraint('visits_session_id_key', 'visits', ['session_id'])
    op.create_index('ix_visits_id', 'visits', ['id'])
    op.create_index('ix_visits_whatsapp', 'visits', ['whatsapp'])
    op.create_index('ix_visits_start_time', 'visits', ['start_time'])
    op.create_index('ix_visits_status', 'visits', ['status'])

def downgrade():
    op.drop_index('ix_visits_status', table_name='visits')
    op.drop_index('ix_visits_start_time', table_name='visits')
    op.drop_index('ix_visits_whatsapp', table_name='visits')
    op.drop_index('ix_visits_id', table_name='visits')
    op.drop_constraint('visits_session_id_key', 'visits', type_='unique')
    op.drop_table('visits')
