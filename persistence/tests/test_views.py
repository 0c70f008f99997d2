"""
API tests for the local store endpoints.

They run against the project's container and its ``localstore`` cache,
which the ``app_store`` fixture clears around every test.
"""
import asyncio

import pytest
from channels.testing import WebsocketCommunicator
from django.urls import reverse
from rest_framework.test import APIClient

from persistence.container import get_container
from persistence.exceptions import DataCorrupted, QuotaExceeded, api_exception_handler
from persistence.realtime.consumers import SyncUpdatesConsumer, broadcast_sync_complete
from persistence.services.events import SyncComplete

pytestmark = pytest.mark.usefixtures("app_store")


@pytest.fixture
def client():
    return APIClient()


@pytest.fixture
def store():
    return get_container().engine


def test_healthz_reports_store(client):
    r = client.get('/healthz')
    assert r.status_code == 200
    assert r.json()['ok'] is True


def test_storage_info(client, store):
    store.insert('patients', {'id': 'P1'})
    r = client.get(reverse('storage_info'))
    assert r.status_code == 200
    assert r.data['available'] is True
    assert r.data['usage']['used'] > 0
    assert r.data['nearLimit'] is False


def test_backup_then_restore(client, store):
    store.insert('patients', {'id': 'P1'})
    r = client.post(reverse('storage_backup'))
    assert r.status_code == 201
    assert 'extramed_patients' in r.data['tables']

    store.set('patients', [])
    r = client.post(reverse('storage_restore'))
    assert r.status_code == 200
    assert r.data['metadata']['lastRestore']
    assert store.get('patients')[0]['id'] == 'P1'


def test_restore_without_backup_is_not_found(client):
    r = client.post(reverse('storage_restore'))
    assert r.status_code == 404
    assert r.data == {'ok': False, 'error': {'code': 'not_found', 'message': 'no backup available'}}


def test_cleanup_trims_notifications(client, store):
    store.set('notifications', [{'id': str(i)} for i in range(60)])
    r = client.post(reverse('storage_cleanup'))
    assert r.status_code == 200
    assert r.data['trimmed'] is True
    assert len(store.get('notifications')) == 50


def test_export_download_sets_attachment_header(client, store):
    store.insert('rooms', {'id': 'r1'})
    r = client.get(reverse('storage_export'), {'download': 'true'})
    assert r.status_code == 200
    assert r['Content-Disposition'].startswith('attachment; filename="clinic-store-')
    assert r.data['data']['extramed_rooms'][0]['id'] == 'r1'


def test_import_round_trip(client, store):
    store.insert('rooms', {'id': 'r1'})
    document = client.get(reverse('storage_export')).data
    document['data']['extramed_rooms'] = [{'id': 'r2'}]
    r = client.post(reverse('storage_import'), document, format='json')
    assert r.status_code == 200
    assert r.data['tables'] == ['extramed_rooms']
    assert store.get('rooms') == [{'id': 'r2'}]


def test_import_rejects_invalid_document(client):
    r = client.post(reverse('storage_import'), {'version': '1.0'}, format='json')
    assert r.status_code == 400
    assert r.data['ok'] is False
    assert r.data['error']['code'] == 'api_error'


def test_sync_status_and_force_sync(client, store):
    store.insert('patients', {'id': 'P1', 'firstName': 'Анна', 'lastName': 'Иванова', 'attendingPhysician': 'Dr. X'})
    store.insert('inpatients', {'id': 'i1', 'patientId': 'P1'})

    r = client.get(reverse('sync_status', args=['P1']))
    assert r.status_code == 200
    assert r.data['synced'] is False
    assert r.data['issues']

    r = client.post(reverse('sync_patient', args=['P1']))
    assert r.status_code == 200
    assert r.data['syncData']['name'] == 'Анна Иванова'

    r = client.get(reverse('sync_status', args=['P1']))
    assert r.data == {'ok': True, 'synced': True, 'issues': []}


def test_sync_unknown_patient(client):
    assert client.get(reverse('sync_status', args=['ghost'])).status_code == 404
    r = client.post(reverse('sync_patient', args=['ghost']))
    assert r.status_code == 404
    assert r.data['error']['code'] == 'sync_failed'


def test_exception_handler_maps_storage_errors():
    r = api_exception_handler(QuotaExceeded('write rejected'), {})
    assert r.status_code == 507
    assert r.data['error']['code'] == 'quota_exceeded'
    assert 'Export your data' in r.data['error']['message']

    r = api_exception_handler(DataCorrupted('bad snapshot'), {})
    assert r.status_code == 500
    assert 'restore from backup' in r.data['error']['message']

    r = api_exception_handler(RuntimeError('boom'), {})
    assert r.status_code == 500
    assert r.data['error'] == {'code': 'server_error', 'message': 'boom'}


def test_websocket_receives_sync_complete():
    async def scenario():
        communicator = WebsocketCommunicator(SyncUpdatesConsumer.as_asgi(), '/ws/sync/')
        connected, _ = await communicator.connect()
        assert connected
        welcome = await communicator.receive_json_from()
        await broadcast_sync_complete(SyncComplete(type='patient', id='P1', payload={'name': 'Анна'}))
        message = await communicator.receive_json_from()
        await communicator.disconnect()
        return welcome, message

    welcome, message = asyncio.run(scenario())
    assert welcome['type'] == 'welcome'
    assert message == {'type': 'sync.complete', 'syncType': 'patient', 'id': 'P1', 'payload': {'name': 'Анна'}}


def test_clear_keeps_only_the_backup(client, store):
    store.insert('patients', {'id': 'P1'})
    r = client.post(reverse('storage_clear'))
    assert r.status_code == 200
    assert r.data['ok'] is True
    assert store.get('patients') is None
    client.post(reverse('storage_restore'))
    assert store.get('patients')[0]['id'] == 'P1'


def test_container_services_cascade_changes_made_off_the_loop():
    container = get_container()
    container.orchestrator.queue.clear()
    container.patients.create({'id': 'P1', 'name': 'Анна Иванова'})
    container.inpatients.create({'id': 'i1', 'patientId': 'P1'})

    async def scenario():
        container.scheduler.bind(asyncio.get_running_loop())
        try:
            # sync views call services from a worker thread
            await asyncio.to_thread(container.patients.update, 'P1', {'attendingPhysician': 'Dr. X'})
            await asyncio.sleep(container.orchestrator.debounce_seconds + 0.3)
        finally:
            container.scheduler.bind(None)

    asyncio.run(scenario())
    inpatient = container.inpatients.get('i1')
    assert inpatient['attendingPhysician'] == 'Dr. X'
    assert inpatient['name'] == 'Анна Иванова'
