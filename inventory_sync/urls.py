from django.urls import path

from .views import (
    alert_acknowledge, alert_list,
    app_settings,
    inventory_critical, inventory_detail, inventory_export, inventory_import, inventory_list_create,
    purchase_order_detail, purchase_order_list_create, purchase_order_submit,
    sync_log_detail, sync_log_list, sync_status, sync_trigger,
    vendor_detail, vendor_list_create,
)

urlpatterns = [
    # Sync
    path('sync/trigger/', sync_trigger, name='sync-trigger'),
    path('sync/status/', sync_status, name='sync-status'),
    path('sync/logs/', sync_log_list, name='sync-log-list'),
    path('sync/logs/<int:pk>/', sync_log_detail, name='sync-log-detail'),

    # Inventory (fixed routes before the SKU lookup)
    path('inventory/', inventory_list_create, name='inventory-list-create'),
    path('inventory/critical/', inventory_critical, name='inventory-critical'),
    path('inventory/export/', inventory_export, name='inventory-export'),
    path('inventory/import/', inventory_import, name='inventory-import'),
    path('inventory/<str:sku>/', inventory_detail, name='inventory-detail'),

    # Vendors
    path('vendors/', vendor_list_create, name='vendor-list-create'),
    path('vendors/<str:pk>/', vendor_detail, name='vendor-detail'),

    # Purchase orders
    path('purchase-orders/', purchase_order_list_create, name='purchase-order-list-create'),
    path('purchase-orders/<int:pk>/', purchase_order_detail, name='purchase-order-detail'),
    path('purchase-orders/<int:pk>/submit/', purchase_order_submit, name='purchase-order-submit'),

    # Alerts
    path('alerts/', alert_list, name='alert-list'),
    path('alerts/<int:pk>/acknowledge/', alert_acknowledge, name='alert-acknowledge'),

    # Settings
    path('settings/', app_settings, name='app-settings'),
]
