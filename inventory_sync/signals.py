from django.dispatch import Signal

# Sent after a changed item's batch is written and its stock fell to or below
# the reorder point. kwargs: sku, severity, quantity, threshold
threshold_crossed = Signal()

# Sent once a SyncLog entry is finalized. kwargs: log
sync_finished = Signal()
