from rest_framework.routers import DefaultRouter

from core.views import AuditLogViewSet, TerminalViewSet

router = DefaultRouter()
router.register(r"terminals", TerminalViewSet, basename="terminal")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls
