from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import (
    BomGuideViewSet,
    ExchangeQueueViewSet,
    InventoryAddUploadView,
    InventoryItemViewSet,
    InventorySyncUploadView,
    MasterUploadView,
    TransactionViewSet,
    WarehouseZoneViewSet,
)

router = DefaultRouter()
router.register(r"inventory", InventoryItemViewSet, basename="inventory-item")
router.register(r"transactions", TransactionViewSet, basename="transaction")
router.register(r"warehouse/layout", WarehouseZoneViewSet, basename="warehouse-zone")
router.register(r"bom", BomGuideViewSet, basename="bom-guide")
router.register(r"exchange-queue", ExchangeQueueViewSet, basename="exchange-queue")

urlpatterns = router.urls + [
    path("upload/inventory-add/", InventoryAddUploadView.as_view(), name="upload-inventory-add"),
    path("upload/master/", MasterUploadView.as_view(), name="upload-master"),
    path("upload/inventory-sync/", InventorySyncUploadView.as_view(), name="upload-inventory-sync"),
]
