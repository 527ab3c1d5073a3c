from django.urls import path

from pins.views import AuthorizationPinView, AuthorizationPinVerifyView

urlpatterns = [
    path("authorization-pins/", AuthorizationPinView.as_view(), name="authorization_pins"),
    path("authorization-pins/verify/", AuthorizationPinVerifyView.as_view(), name="authorization_pin_verify"),
]
