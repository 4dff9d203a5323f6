from rest_framework.routers import DefaultRouter

from inventory.views import (
    GRNViewSet,
    LocationViewSet,
    ProductViewSet,
    PurchaseOrderViewSet,
    StockTransactionViewSet,
    StockViewSet,
    SupplierPaymentViewSet,
    SupplierViewSet,
)

router = DefaultRouter()
router.register(r"products", ProductViewSet, basename="product")
router.register(r"locations", LocationViewSet, basename="location")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"stock", StockViewSet, basename="stock")
router.register(r"stock-transactions", StockTransactionViewSet, basename="stock-transaction")
router.register(r"purchase-orders", PurchaseOrderViewSet, basename="purchase-order")
router.register(r"grns", GRNViewSet, basename="grn")
router.register(r"supplier-payments", SupplierPaymentViewSet, basename="supplier-payment")

urlpatterns = router.urls
