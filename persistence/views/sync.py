"""
Sync inspection endpoints.

The orchestrator's coroutines run on the request thread through
``async_to_sync``; they never raise, failures come back in the body.
"""
from __future__ import annotations

from asgiref.sync import async_to_sync
from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status

from ..container import get_container


@api_view(['GET'])
def sync_status(request, patient_id: str):
    result = async_to_sync(get_container().orchestrator.check_sync_status)(patient_id)
    if result.get('error'):
        return Response({'ok': False, 'error': {'code': 'not_found', 'message': result['error']}},
                        status=status.HTTP_404_NOT_FOUND)
    return Response({'ok': True, 'synced': result['synced'], 'issues': result['issues']})


@api_view(['POST'])
def force_sync(request, patient_id: str):
    result = async_to_sync(get_container().orchestrator.force_sync_patient)(patient_id)
    if not result['success']:
        return Response({'ok': False, 'error': {'code': 'sync_failed', 'message': result['error']}},
                        status=(status.HTTP_404_NOT_FOUND if result['error'] == 'Patient not found'
                                else status.HTTP_500_INTERNAL_SERVER_ERROR))
    return Response({'ok': True, 'syncData': result['syncData']})
