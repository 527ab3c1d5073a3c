from django.urls import path
from rest_framework.routers import DefaultRouter

from shifts.views import (
    CashMoveView,
    ShiftCloseView,
    ShiftCurrentView,
    ShiftOpenView,
    ShiftSummaryView,
    ShiftTemplateView,
    ShiftViewSet,
)

router = DefaultRouter()
router.register(r"shifts", ShiftViewSet, basename="shift")

urlpatterns = [
    path("shifts/open/", ShiftOpenView.as_view(), name="shift_open"),
    path("shifts/current/", ShiftCurrentView.as_view(), name="shift_current"),
    path("shifts/templates/", ShiftTemplateView.as_view(), name="shift_templates"),
    path("shifts/<uuid:shift_id>/cash-moves/", CashMoveView.as_view(), name="shift_cash_moves"),
    path("shifts/<uuid:shift_id>/close/", ShiftCloseView.as_view(), name="shift_close"),
    path("shifts/<uuid:shift_id>/summary/", ShiftSummaryView.as_view(), name="shift_summary"),
] + router.urls
