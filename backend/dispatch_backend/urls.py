from django.urls import path, include
from rest_framework.routers import DefaultRouter
from logistics.views import AssignmentViewSet, OrderViewSet, RiderViewSet, SweepView

router = DefaultRouter()
router.register(r'orders', OrderViewSet, basename='order')
router.register(r'riders', RiderViewSet, basename='rider')
router.register(r'assignments', AssignmentViewSet, basename='assignment')

urlpatterns = [
    path('api/v1/', include(router.urls)),
    path('api/v1/sweeps/', SweepView.as_view(), name='sweep'),
]
