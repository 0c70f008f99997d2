"""
URL mappings for the local store API.

Trailing slashes are omitted, matching the front-end's endpoint table.
"""
from django.urls import path

from .views.health import healthz
from .views.storage import storage_info, create_backup, restore_backup, cleanup, export_data, import_data, clear_data
from .views.sync import sync_status, force_sync

urlpatterns = [
    path('healthz', healthz, name='healthz'),
    # storage administration
    path('api/storage/info', storage_info, name='storage_info'),
    path('api/storage/backup', create_backup, name='storage_backup'),
    path('api/storage/restore', restore_backup, name='storage_restore'),
    path('api/storage/cleanup', cleanup, name='storage_cleanup'),
    path('api/storage/clear', clear_data, name='storage_clear'),
    path('api/storage/export', export_data, name='storage_export'),
    path('api/storage/import', import_data, name='storage_import'),
    # cross-table sync
    path('api/sync/patients/<str:patient_id>/status', sync_status, name='sync_status'),
    path('api/sync/patients/<str:patient_id>', force_sync, name='sync_patient'),
]
