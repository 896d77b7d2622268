# scheduling/api_urls.py
"""
API URL configuration for the scheduling app.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'api'

router = DefaultRouter()
router.register(r'events', views.EventViewSet, basename='event')
router.register(r'slots', views.SlotViewSet, basename='slot')

urlpatterns = [
    path('', include(router.urls)),
]
