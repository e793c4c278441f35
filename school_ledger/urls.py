from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),

    path('sessions/', include('apps.core.academic_sessions.urls')),
    path('fees/', include('apps.core.fees.urls')),
]
