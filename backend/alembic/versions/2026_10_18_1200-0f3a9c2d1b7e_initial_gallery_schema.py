"""Initial gallery schema (photos, equipment, categories, settings)

Revision ID: 0f3a9c2d1b7e
Revises:
Create Date: 2026-10-18 12:00:00.000000+00:00

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0f3a9c2d1b7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'cameras',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('brand', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'lenses',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('brand', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'categories',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
    )
    op.create_table(
        'settings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('key', sa.String(100), nullable=False, unique=True),
        sa.Column('value', sa.Text(), nullable=False),
    )
    op.create_index('ix_settings_key', 'settings', ['key'])

    op.create_table(
        'photos',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('storage_provider', sa.String(20), nullable=False),
        sa.Column('storage_key', sa.String(1024), nullable=True),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('thumbnail_url', sa.String(2048), nullable=True),
        sa.Column('width', sa.Integer(), nullable=False),
        sa.Column('height', sa.Integer(), nullable=False),
        sa.Column('size', sa.BigInteger(), nullable=True),
        sa.Column('file_hash', sa.String(64), nullable=True),
        sa.Column('dominant_colors', sa.JSON(), nullable=True),
        sa.Column('is_featured', sa.Boolean(), nullable=False),
        sa.Column('camera_id', sa.String(255), sa.ForeignKey('cameras.id'), nullable=True),
        sa.Column('lens_id', sa.String(255), sa.ForeignKey('lenses.id'), nullable=True),
        sa.Column('camera_make', sa.String(100), nullable=True),
        sa.Column('camera_model', sa.String(100), nullable=True),
        sa.Column('lens_model', sa.String(255), nullable=True),
        sa.Column('focal_length', sa.String(20), nullable=True),
        sa.Column('aperture', sa.String(20), nullable=True),
        sa.Column('shutter_speed', sa.String(20), nullable=True),
        sa.Column('iso', sa.Integer(), nullable=True),
        sa.Column('taken_at', sa.DateTime(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('orientation', sa.Integer(), nullable=True),
        sa.Column('software', sa.String(255), nullable=True),
        sa.Column('exif_raw', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_photos_storage_provider', 'photos', ['storage_provider'])
    op.create_index('ix_photos_camera_id', 'photos', ['camera_id'])
    op.create_index('ix_photos_lens_id', 'photos', ['lens_id'])
    op.create_index('ix_photos_file_hash', 'photos', ['file_hash'])
    op.create_index('ix_photos_provider_key', 'photos', ['storage_provider', 'storage_key'])

    op.create_table(
        'photo_categories',
        sa.Column('photo_id', sa.String(36), sa.ForeignKey('photos.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('category_id', sa.String(36), sa.ForeignKey('categories.id', ondelete='CASCADE'), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table('photo_categories')
    op.drop_index('ix_photos_provider_key', table_name='photos')
    op.drop_index('ix_photos_file_hash', table_name='photos')
    op.drop_index('ix_photos_lens_id', table_name='photos')
    op.drop_index('ix_photos_camera_id', table_name='photos')
    op.drop_index('ix_photos_storage_provider', table_name='photos')
    op.drop_table('photos')
    op.drop_index('ix_settings_key', table_name='settings')
    op.drop_table('settings')
    op.drop_table('categories')
    op.drop_table('lenses')
    op.drop_table('cameras')
