from django.urls import path
from .views import (
    CancelOrderView,
    FinalizeOrderView,
    OrderDetailView,
    OverrideValidationView,
    RequestInformationView,
    SendToRadiologyView,
    UpdateOrderStatusView,
    ValidateOrderView,
)

urlpatterns = [
    path('orders/validate/', ValidateOrderView.as_view(), name='order-validate'),
    path('orders/<int:order_id>/', OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:order_id>/finalize/', FinalizeOrderView.as_view(), name='order-finalize'),
    path('orders/<int:order_id>/override/', OverrideValidationView.as_view(), name='order-override'),
    path('orders/<int:order_id>/send-to-radiology/', SendToRadiologyView.as_view(), name='order-send-to-radiology'),
    path('orders/<int:order_id>/status/', UpdateOrderStatusView.as_view(), name='order-status'),
    path('orders/<int:order_id>/request-info/', RequestInformationView.as_view(), name='order-request-info'),
    path('orders/<int:order_id>/cancel/', CancelOrderView.as_view(), name='order-cancel'),
]
