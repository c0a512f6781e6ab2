"""
URL mappings for the queue API.

Trailing slashes are omitted; fixed paths are listed before the
``<queue_id>`` routes so they are not swallowed by the UUID converter.
"""
from django.urls import include, path

from .views import health
from .views import queues

urlpatterns = [
    path('healthz', health.healthz),
    path('', include('django_prometheus.urls')),

    path('api/queue/active', queues.active_board),
    path('api/queue/check-in', queues.check_in),
    path('api/queue/patient-status', queues.patient_status),

    path('api/queue/entries/<uuid:entry_id>', queues.entry_detail),
    path('api/queue/entries/<uuid:entry_id>/start', queues.start_consultation),
    path('api/queue/entries/<uuid:entry_id>/complete', queues.complete_consultation),
    path('api/queue/entries/<uuid:entry_id>/no-show', queues.mark_no_show),
    path('api/queue/entries/<uuid:entry_id>/cancel', queues.cancel_entry),
    path('api/queue/entries/<uuid:entry_id>/transfer', queues.transfer_entry),

    path('api/queue/<uuid:queue_id>', queues.queue_detail),
    path('api/queue/<uuid:queue_id>/stats', queues.queue_stats),
    path('api/queue/<uuid:queue_id>/call-next', queues.call_next),
    path('api/queue/<uuid:queue_id>/close', queues.close_queue),
]
