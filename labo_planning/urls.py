# labo_planning/urls.py
"""
URL configuration for labo_planning project.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""
from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('scheduling.api_urls')),
    path('api-auth/', include('rest_framework.urls')),
]
