# labo_planning/wsgi.py
"""
WSGI config for labo_planning project.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'labo_planning.settings')

application = get_wsgi_application()
