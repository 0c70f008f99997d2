"""
Error taxonomy for the local store and the unified API exception handler.

Read paths never raise these; write and administrative paths do.
"""
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response
from rest_framework import status


class StorageError(Exception):
    """Base class for every local store failure."""
    code = 'storage_error'


class StorageUnavailable(StorageError):
    code = 'storage_unavailable'


class QuotaExceeded(StorageError):
    code = 'quota_exceeded'


class DataCorrupted(StorageError):
    """Payload parsed but failed structural validation."""
    code = 'data_corrupted'


class ParseError(StorageError):
    """Value is not valid JSON even after the repair pass."""
    code = 'parse_error'


class NotFound(StorageError):
    code = 'not_found'


class DuplicateRecord(StorageError):
    code = 'duplicate_record'


_STATUS_BY_ERROR = (
    (QuotaExceeded, status.HTTP_507_INSUFFICIENT_STORAGE,
     'Storage quota exceeded. Export your data and clean old records.'),
    (StorageUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE,
     'Local storage is unavailable.'),
    (DataCorrupted, status.HTTP_500_INTERNAL_SERVER_ERROR,
     'Stored data is corrupted; restore from backup or import an export.'),
    (ParseError, status.HTTP_500_INTERNAL_SERVER_ERROR,
     'Stored data could not be parsed; recovery from backup was attempted.'),
    (NotFound, status.HTTP_404_NOT_FOUND, None),
    (DuplicateRecord, status.HTTP_409_CONFLICT, None),
)


def _storage_error_response(exc):
    for error_cls, http_status, notice in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            detail = str(exc)
            message = f'{notice} ({detail})' if notice and detail else (detail or notice or exc.code)
            return Response({'ok': False, 'error': {'code': exc.code, 'message': message}}, status=http_status)
    return Response({'ok': False, 'error': {'code': exc.code, 'message': str(exc)}}, status=500)


def api_exception_handler(exc, context):
    if isinstance(exc, StorageError):
        return _storage_error_response(exc)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': str(exc)}}, status=500)
    # normalize response
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    return Response({'ok': False, 'error': {'code': 'api_error', 'message': detail}}, status=resp.status_code)
