from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('trading.urls')),
]

handler404 = 'trading.views.not_found'
