from django.http import JsonResponse

from ..container import get_container


def healthz(request):
    engine = get_container().engine
    if not engine.available:
        return JsonResponse({'ok': False, 'error': 'local store unavailable'}, status=503)
    usage = engine.get_usage()
    return JsonResponse({'ok': True, 'store': True, 'percentage': usage['percentage']})
