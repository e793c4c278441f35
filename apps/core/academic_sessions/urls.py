from django.urls import path

from .views import (
    academic_context,
    session_activate,
    session_list,
    term_activate,
    term_create,
)

urlpatterns = [
    path('', session_list, name='session_list'),
    path('context/', academic_context, name='academic_context'),
    path('<int:pk>/activate/', session_activate, name='session_activate'),
    path('<int:pk>/terms/', term_create, name='term_create'),
    path('terms/<int:pk>/activate/', term_activate, name='term_activate'),
]
