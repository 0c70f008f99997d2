"""
Administrative endpoints for the local store.

Usage and metadata, manual backup/restore, pressure relief, clearing, and the
export/import document. Storage errors propagate to
``persistence.exceptions.api_exception_handler``.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, throttle_classes
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework import status

from ..container import get_container
from ..serializers.transfer import ExportDocumentSerializer, ExportQuerySerializer
from ..services.transfer import export_document, import_document


class StorageWriteThrottle(AnonRateThrottle):
    scope = 'storage_write'


@api_view(['GET'])
def storage_info(request):
    engine = get_container().engine
    return Response({
        'ok': True,
        'available': engine.available,
        'usage': engine.get_usage(),
        'nearLimit': engine.is_near_limit(),
        'metadata': engine.get_metadata(),
    })


@api_view(['POST'])
@throttle_classes([StorageWriteThrottle])
def create_backup(request):
    snapshot = get_container().engine.create_backup()
    if snapshot is None:
        return Response({'ok': False, 'error': {'code': 'backup_failed', 'message': 'backup could not be created'}},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response({'ok': True, 'timestamp': snapshot['timestamp'], 'tables': sorted(snapshot['data'])},
                    status=status.HTTP_201_CREATED)


@api_view(['POST'])
@throttle_classes([StorageWriteThrottle])
def restore_backup(request):
    engine = get_container().engine
    engine.restore_from_backup()
    return Response({'ok': True, 'metadata': engine.get_metadata()})


@api_view(['POST'])
def cleanup(request):
    engine = get_container().engine
    trimmed = engine.relieve_pressure()
    return Response({'ok': True, 'trimmed': trimmed, 'usage': engine.get_usage()})


@api_view(['GET'])
def export_data(request):
    q = ExportQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    document = export_document(get_container().engine)
    resp = Response(document)
    if q.validated_data.get('download'):
        filename = f"clinic-store-{document['exportDate'][:10]}.json"
        resp['Content-Disposition'] = f'attachment; filename="{filename}"'
    return resp


@api_view(['POST'])
@throttle_classes([StorageWriteThrottle])
def import_data(request):
    s = ExportDocumentSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    written = import_document(get_container().engine, s.validated_data)
    return Response({'ok': True, 'tables': written})


@api_view(['POST'])
@throttle_classes([StorageWriteThrottle])
def clear_data(request):
    engine = get_container().engine
    if not engine.clear_all():
        return Response({'ok': False, 'error': {'code': 'clear_failed', 'message': 'data could not be cleared'}},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response({'ok': True, 'usage': engine.get_usage()})
