import logging

from asgiref.sync import async_to_sync
from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from services.ride_sync import (
    RideSyncError,
    build_ride_ics,
    create_ride_plan,
    get_document_store,
    purge_ride_content,
    require_owner,
    ride_ics_filename,
)
from services.ride_sync.calendar import CALENDAR_CONTENT_TYPE
from services.ride_sync.exceptions import NotFoundError, WriteFailedError
from services.ride_sync.store import StoreError, ride_path

from .models import ContentItem, RidePlan
from .serializers import ContentItemSerializer, RidePlanCreateSerializer, RidePlanSerializer

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "validation_failed": status.HTTP_400_BAD_REQUEST,
    "invalid_state": status.HTTP_409_CONFLICT,
    "subscription_failed": status.HTTP_502_BAD_GATEWAY,
    "write_failed": status.HTTP_502_BAD_GATEWAY,
}

TRUTHY = ('1', 'true', 'yes')


def _error_response(exc: RideSyncError) -> Response:
    body = {'error': exc.message, 'kind': exc.kind}
    if getattr(exc, 'field', None):
        body['field'] = exc.field
    return Response(body, status=ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST))


def _load_owned_plan(store, ride_id, user_id) -> dict:
    """Read a ride plan through the document store and check ownership."""
    try:
        snapshot = async_to_sync(store.get)(ride_path(ride_id))
    except StoreError as exc:
        raise WriteFailedError(str(exc)) from exc
    if not snapshot.exists:
        raise NotFoundError("Ride not found.")
    data = snapshot.to_dict()
    require_owner(user_id, data.get('owner_id'))
    return data


# ==================== Ride Plan APIs ====================

@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def ride_plans(request):
    """
    GET: list the current user's ride plans, newest first
    POST: create a ride plan (status always starts as planned)
    """
    if request.method == 'GET':
        plans = RidePlan.objects.filter(owner=request.user)
        return Response(RidePlanSerializer(plans, many=True).data)

    serializer = RidePlanCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        ride_id = async_to_sync(create_ride_plan)(
            get_document_store(), request.user.id, serializer.validated_data
        )
    except RideSyncError as exc:
        return _error_response(exc)

    ride = RidePlan.objects.get(pk=ride_id)
    return Response(RidePlanSerializer(ride).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated])
def ride_plan_detail(request, ride_id):
    """
    GET: a single ride plan
    DELETE: delete the plan; content stays unless ?purge_content=1 is given
    """
    store = get_document_store()
    try:
        data = _load_owned_plan(store, ride_id, request.user.id)
        if request.method == 'GET':
            return Response(data)

        purged = 0
        if request.query_params.get('purge_content', '').lower() in TRUTHY:
            purged = async_to_sync(purge_ride_content)(store, ride_id, request.user.id)
        try:
            async_to_sync(store.delete)(ride_path(ride_id))
        except StoreError as exc:
            raise WriteFailedError(str(exc)) from exc
    except RideSyncError as exc:
        return _error_response(exc)

    logger.info("Ride plan %s deleted by user %s", ride_id, request.user.id)
    return Response({
        'deleted': str(ride_id),
        'purged_content': purged,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_plan_content(request, ride_id):
    """Content items of a ride plan, newest first"""
    try:
        _load_owned_plan(get_document_store(), ride_id, request.user.id)
    except RideSyncError as exc:
        return _error_response(exc)

    items = ContentItem.objects.filter(ride_id=ride_id)
    return Response(ContentItemSerializer(items, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ride_plan_calendar(request, ride_id):
    """Download the plan's schedule as a single-event .ics file"""
    try:
        data = _load_owned_plan(get_document_store(), ride_id, request.user.id)
        ics = build_ride_ics(data)
    except RideSyncError as exc:
        return _error_response(exc)

    response = HttpResponse(ics, content_type=CALENDAR_CONTENT_TYPE)
    response['Content-Disposition'] = f'attachment; filename="{ride_ics_filename(data.get("title"))}"'
    return response
