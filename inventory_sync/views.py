import csv
import logging

import requests
from django.db.models import Q
from django.db.models.deletion import ProtectedError
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response

from .clients.finale_client import FinaleClient, purchase_order_payload
from .config import load_sync_config
from .exceptions import ConfigurationError, SyncAlreadyRunning, SyncError
from .locks import is_locked
from .models import Alert, AppSettings, InventoryItem, PurchaseOrder, SyncLog, Vendor
from .rate_limit import get_rate_limiter
from .serializers import (
    AlertSerializer,
    AppSettingsSerializer,
    InventoryItemSerializer,
    PurchaseOrderSerializer,
    SyncLogSerializer,
    SyncTriggerSerializer,
    VendorSerializer,
)
from .sources.csv_source import CsvFileSource
from .sync import IMPORT, STRATEGIES, SyncOrchestrator
from .tasks import sync_inventory

logger = logging.getLogger(__name__)

SECRET_FIELDS = ('finale_api_key', 'finale_api_secret', 'email_api_key')
EXPORT_COLUMNS = ['sku', 'name', 'quantity', 'unit_cost', 'reorder_threshold', 'vendor_id', 'is_active']


def error_response(message, status_code):
    return Response({'error': message}, status=status_code)


def sync_error_response(exc):
    return error_response(str(exc), exc.status_code)


def paginated(request, queryset, serializer_class):
    paginator = LimitOffsetPagination()
    page = paginator.paginate_queryset(queryset, request)
    serializer = serializer_class(page, many=True)
    return paginator.get_paginated_response(serializer.data)


def as_bool(value):
    return str(value).lower() in ('1', 'true', 'yes')


# Sync endpoints
@api_view(['POST'])
def sync_trigger(request):
    """Run a sync now, or queue it on the worker with background=true"""
    serializer = SyncTriggerSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Invalid sync request', 'details': serializer.errors},
                        status=status.HTTP_400_BAD_REQUEST)
    strategy = serializer.validated_data['strategy']
    dry_run = serializer.validated_data['dry_run']

    try:
        orchestrator = SyncOrchestrator(strategy=strategy, dry_run=dry_run)
        if serializer.validated_data['background']:
            load_sync_config().require_finale()
            resolved = orchestrator.resolve_strategy()
            if is_locked(resolved):
                raise SyncAlreadyRunning(resolved)
            task = sync_inventory.delay(strategy=strategy, dry_run=dry_run)
            logger.info("Queued %s sync as task %s", strategy, task.id)
            return Response({'task_id': task.id, 'strategy': strategy, 'dry_run': dry_run},
                            status=status.HTTP_202_ACCEPTED)
        summary = orchestrator.run()
    except SyncError as exc:
        logger.warning("Sync trigger rejected: %s", exc)
        return sync_error_response(exc)
    return Response(summary)


@api_view(['GET'])
def sync_status(request):
    strategy = request.query_params.get('strategy')
    latest = SyncLog.objects.latest_for(strategy)
    running = [name for name in STRATEGIES if is_locked(name)]
    return Response({
        'latest': SyncLogSerializer(latest).data if latest else None,
        'in_progress': bool(running),
        'running_strategies': running,
        'rate_limiter': get_rate_limiter().status(),
    })


@api_view(['GET'])
def sync_log_list(request):
    queryset = SyncLog.objects.all()
    strategy = request.query_params.get('strategy')
    if strategy:
        queryset = queryset.filter(strategy=strategy)
    log_status = request.query_params.get('status')
    if log_status:
        queryset = queryset.filter(status=log_status)
    return paginated(request, queryset, SyncLogSerializer)


@api_view(['GET'])
def sync_log_detail(request, pk):
    log = get_object_or_404(SyncLog, pk=pk)
    return Response(SyncLogSerializer(log).data)


# Inventory endpoints
@api_view(['GET', 'POST'])
def inventory_list_create(request):
    if request.method == 'GET':
        queryset = InventoryItem.objects.select_related('vendor')
        search = request.query_params.get('search')
        if search:
            queryset = queryset.filter(Q(sku__icontains=search) | Q(name__icontains=search))
        vendor = request.query_params.get('vendor')
        if vendor:
            queryset = queryset.filter(vendor_id=vendor)
        if as_bool(request.query_params.get('needs_reorder', '')):
            queryset = queryset.filter(pk__in=InventoryItem.objects.needing_reorder().values('pk'))
        return paginated(request, queryset, InventoryItemSerializer)

    serializer = InventoryItemSerializer(data=request.data)
    if serializer.is_valid():
        serializer.save()
        return Response(serializer.data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
def inventory_detail(request, sku):
    item = get_object_or_404(InventoryItem, pk=sku)
    if request.method == 'GET':
        return Response(InventoryItemSerializer(item).data)
    if request.method == 'DELETE':
        try:
            item.delete()
        except ProtectedError:
            return error_response("Item is referenced by purchase orders", status.HTTP_409_CONFLICT)
        return Response(status=status.HTTP_204_NO_CONTENT)

    serializer = InventoryItemSerializer(item, data=request.data, partial=request.method == 'PATCH')
    if serializer.is_valid():
        serializer.save()
        return Response(serializer.data)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET'])
def inventory_critical(request):
    """Active items at or below their reorder point, emptiest first"""
    queryset = InventoryItem.objects.needing_reorder().select_related('vendor').order_by('quantity', 'sku')
    return Response(InventoryItemSerializer(queryset, many=True).data)


@api_view(['GET'])
def inventory_export(request):
    response = HttpResponse(content_type='text/csv')
    filename = f"inventory-{timezone.now():%Y%m%d}.csv"
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    writer = csv.writer(response)
    writer.writerow(EXPORT_COLUMNS)
    for row in InventoryItem.objects.values_list(*EXPORT_COLUMNS).iterator():
        writer.writerow(row)
    return response


@api_view(['POST'])
@parser_classes([MultiPartParser, FormParser])
def inventory_import(request):
    """Push an uploaded CSV through the regular sync pipeline"""
    upload = request.FILES.get('file')
    if upload is None:
        return error_response("Upload a CSV file in the 'file' field", status.HTTP_400_BAD_REQUEST)
    dry_run = as_bool(request.data.get('dry_run', ''))
    try:
        summary = SyncOrchestrator(strategy=IMPORT, dry_run=dry_run, source=CsvFileSource(upload)).run()
    except SyncError as exc:
        return sync_error_response(exc)
    except (csv.Error, UnicodeDecodeError) as exc:
        return error_response(f"Could not read CSV: {exc}", status.HTTP_400_BAD_REQUEST)
    return Response(summary)


# Vendor endpoints
@api_view(['GET', 'POST'])
def vendor_list_create(request):
    if request.method == 'GET':
        queryset = Vendor.objects.all()
        search = request.query_params.get('search')
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(email__icontains=search))
        return paginated(request, queryset, VendorSerializer)

    serializer = VendorSerializer(data=request.data)
    if serializer.is_valid():
        serializer.save()
        return Response(serializer.data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
def vendor_detail(request, pk):
    vendor = get_object_or_404(Vendor, pk=pk)
    if request.method == 'GET':
        return Response(VendorSerializer(vendor).data)
    if request.method == 'DELETE':
        try:
            vendor.delete()
        except ProtectedError:
            return error_response("Vendor has purchase orders", status.HTTP_409_CONFLICT)
        return Response(status=status.HTTP_204_NO_CONTENT)

    serializer = VendorSerializer(vendor, data=request.data, partial=request.method == 'PATCH')
    if serializer.is_valid():
        serializer.save()
        return Response(serializer.data)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


# Purchase order endpoints
@api_view(['GET', 'POST'])
def purchase_order_list_create(request):
    if request.method == 'GET':
        queryset = PurchaseOrder.objects.select_related('vendor').prefetch_related('items__item')
        po_status = request.query_params.get('status')
        if po_status:
            queryset = queryset.filter(status=po_status)
        return paginated(request, queryset, PurchaseOrderSerializer)

    serializer = PurchaseOrderSerializer(data=request.data)
    if serializer.is_valid():
        serializer.save()
        return Response(serializer.data, status=status.HTTP_201_CREATED)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
def purchase_order_detail(request, pk):
    order = get_object_or_404(PurchaseOrder, pk=pk)
    if request.method == 'GET':
        return Response(PurchaseOrderSerializer(order).data)
    if order.status != PurchaseOrder.STATUS_DRAFT:
        return error_response("Only draft purchase orders can be changed", status.HTTP_409_CONFLICT)
    if request.method == 'DELETE':
        order.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)

    serializer = PurchaseOrderSerializer(order, data=request.data, partial=request.method == 'PATCH')
    if serializer.is_valid():
        serializer.save()
        return Response(serializer.data)
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['POST'])
def purchase_order_submit(request, pk):
    """Create the order in Finale and mark it submitted"""
    order = get_object_or_404(PurchaseOrder.objects.select_related('vendor'), pk=pk)
    if order.status != PurchaseOrder.STATUS_DRAFT:
        return error_response(f"Purchase order is already {order.status}", status.HTTP_409_CONFLICT)

    config = load_sync_config()
    if not config.has_finale_credentials:
        return sync_error_response(ConfigurationError("Finale API key, secret and account path are required"))

    client = FinaleClient(config)
    try:
        with client.make_session() as session:
            result = client.create_purchase_order(session, purchase_order_payload(order))
    except requests.exceptions.RequestException as exc:
        logger.error("Submitting purchase order %s to Finale failed: %s", order.pk, exc)
        return error_response(str(exc), status.HTTP_502_BAD_GATEWAY)

    order.order_number = str(result.get('orderId') or result.get('orderNumber') or order.pk)
    order.status = PurchaseOrder.STATUS_SUBMITTED
    order.save(update_fields=['order_number', 'status', 'updated_at'])
    logger.info("Submitted purchase order %s to Finale as %s", order.pk, order.order_number)
    return Response(PurchaseOrderSerializer(order).data)


# Alert endpoints
@api_view(['GET'])
def alert_list(request):
    queryset = Alert.objects.select_related('item')
    acknowledged = request.query_params.get('acknowledged')
    if acknowledged is not None:
        queryset = queryset.filter(acknowledged=as_bool(acknowledged))
    severity = request.query_params.get('severity')
    if severity:
        queryset = queryset.filter(severity=severity)
    return paginated(request, queryset, AlertSerializer)


@api_view(['POST'])
def alert_acknowledge(request, pk):
    alert = get_object_or_404(Alert, pk=pk)
    alert.acknowledge()
    return Response(AlertSerializer(alert).data)


# Settings endpoint
@api_view(['GET', 'PUT'])
def app_settings(request):
    settings_row = AppSettings.load()
    if request.method == 'GET':
        if settings_row is None:
            settings_row = AppSettings()
        return Response(AppSettingsSerializer(settings_row).data)

    # Blank secrets keep the stored value; the client never sees them to send back
    data = {key: value for key, value in request.data.items()
            if not (key in SECRET_FIELDS and value in ('', None))}
    serializer = AppSettingsSerializer(data=data, partial=True)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    settings_row = AppSettings.save_values(**serializer.validated_data)
    logger.info("Settings updated (fields: %s)", ', '.join(sorted(serializer.validated_data)))
    return Response(AppSettingsSerializer(settings_row).data)
