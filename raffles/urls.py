from django.urls import path
from . import views

urlpatterns = [
    path("api/raffles/<int:raffle_id>/numbers/", views.raffle_numbers, name="raffle_numbers"),
    path("api/checkout/", views.checkout, name="checkout"),
    path("api/payments/webhook/", views.payment_webhook, name="payment_webhook"),
    path("api/mock-checkout/<str:payment_id>/", views.mock_checkout, name="mock_checkout"),
    path("api/results/", views.raffle_results, name="raffle_results"),
    path("api/participations/", views.user_participations, name="user_participations"),

    # Administración (solo staff)
    path("api/raffles/<int:raffle_id>/close/", views.raffle_close, name="raffle_close"),
    path("api/raffles/<int:raffle_id>/draw/", views.raffle_draw, name="raffle_draw"),

    # Export CSV / JSON (solo staff)
    path("export/raffle/<int:raffle_id>/entries.csv", views.export_entries_csv, name="export_entries_csv"),
    path("export/raffle/<int:raffle_id>/entries.json", views.export_entries_json, name="export_entries_json"),
    path("export/raffle/<int:raffle_id>/reservations.csv", views.export_reservations_csv, name="export_reservations_csv"),
]
