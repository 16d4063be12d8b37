from django.urls import path
from . import views
app_name = "payments"
urlpatterns = [
    path("pay", views.pay_view, name="pay"),
    path("redirect", views.redirect_view, name="redirect"),
    path("callback", views.callback_view, name="callback"),
    path("status/<str:txn_id>", views.status_view, name="status"),
    path("done", views.done_view, name="done"),
    path("health", views.health_view, name="health"),
]
