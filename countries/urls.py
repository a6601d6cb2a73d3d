from django.urls import path
from . import views

urlpatterns = [
    path('countries/refresh', views.refresh_countries),
    path('countries', views.list_countries),
    # literal paths must precede <str:name>, or /countries/image is a lookup for a country called "image"
    path('countries/image', views.get_summary_image),
    path('countries/<str:name>', views.country_detail),
    path('status', views.status_view),
]
